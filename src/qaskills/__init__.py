"""QA Skills CLI - install skills into AI coding agents."""

__version__ = "0.1.0"
