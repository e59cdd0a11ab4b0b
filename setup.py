"""
Setup script for quizkit.

quizkit edits the layout of a quiz (slots, pages, sections), calculates
attempt and item statistics with a time-boxed cache, and regrades recorded
attempts with a dry-run ledger.

The 'quizkit' command is the entry point.
"""

from setuptools import find_packages, setup

setup(
    name="quizkit",
    version="0.1.0",
    description="Quiz structure editing, statistics and regrading",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["quizkit", "quizkit.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        "psycopg2-binary>=2.9.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "quizkit=quizkit.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="quiz statistics regrade cli education",
)
