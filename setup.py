"""
kbindex - setup.py
------------------
Installs the kbindex packages and provides the CLI entry point.

Usage:
    pip install -e .
    kbindex index --help
"""
from setuptools import setup, find_packages

setup(
    name="kbindex",
    version="0.1.0",
    description="Markdown knowledge base indexer with full-text search and cross-reference graph",
    author="kbindex",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "python-dotenv",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "kbindex=kbindex.cli:main",
        ],
    },
)
