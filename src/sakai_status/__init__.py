"""sakai-status - plain-text runtime status reports."""

__version__ = "0.1.0"
