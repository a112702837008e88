"""Plain-text time tracking in monthly Markdown files."""

__version__ = "0.1.0"
