"""Keep a local project in sync with an org."""

__version__ = "0.1.0"
