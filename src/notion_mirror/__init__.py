"""Incremental mirroring of Notion databases into a local content store."""

__version__ = "0.3.0"
