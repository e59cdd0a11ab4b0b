"""
Command line interface for quizkit.
"""

from .main import app, main

__all__ = ["app", "main"]
