"""querycache: scheduled-refresh read cache in front of a SQL database."""

__version__ = "0.1.0"
