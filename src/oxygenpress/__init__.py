"""Markdown article publishing to a local directory or a GitHub repository."""

__version__ = "0.1.0"
