"""Core Notion client functionality shared by the sync engine and MCP server."""

from .async_utils import run_sync
from .client import NotionClient
from .retry import RateLimiter, RetryPolicy

__all__ = ["NotionClient", "RateLimiter", "RetryPolicy", "run_sync"]
