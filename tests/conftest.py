"""Shared pytest fixtures for notion-mirror tests."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from notion_mirror.config import Config

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live Notion workspace",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live Notion workspace"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        # --run-live given: do not skip live tests
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        notion_token="secret_test",
        api_url="https://api.notion.example/v1",
        max_parallel_requests=3,
        max_retries=2,
        base_delay=0.01,
        max_delay=0.05,
        rate_limit_requests=0,
        page_size=2,
    )


@pytest.fixture
def mock_notion_client(mock_config):
    """Create a mock NotionClient instance for testing."""
    from notion_mirror.core.client import NotionClient

    client = MagicMock(spec=NotionClient)
    client.config = mock_config
    return client


@pytest.fixture
def make_page():
    """Factory fixture for Notion page objects."""

    def _make(
        page_id: str,
        edited: str = "2024-05-01T10:00:00.000Z",
        title: str = "",
        has_children: bool = False,
    ) -> dict:
        return {
            "object": "page",
            "id": page_id,
            "last_edited_time": edited,
            "has_children": has_children,
            "properties": {
                "Name": {
                    "type": "title",
                    "title": [{"plain_text": title or page_id}],
                }
            },
        }

    return _make


@pytest.fixture
def utc():
    """Shorthand for building aware UTC datetimes."""

    def _utc(*args: int) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)

    return _utc
