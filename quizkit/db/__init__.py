from .database import build_engine, create_session_factory, get_engine, init_db, session_scope
from .queries import create_quiz, get_quiz, has_attempts

__all__ = [
    "build_engine",
    "create_session_factory",
    "get_engine",
    "init_db",
    "session_scope",
    "create_quiz",
    "get_quiz",
    "has_attempts",
]
