"""Connection configuration for the Notion API client.

Reads Notion connection settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    NOTION_TOKEN: Notion integration token (required)
    NOTION_API_URL: API base URL (optional, default: https://api.notion.com/v1)
    NOTION_DEBUG: Enable debug logging (optional, default: false)
    NOTION_MAX_PARALLEL_REQUESTS: Concurrent API calls per batch (optional, default: 5)
    NOTION_MAX_RETRIES: Retries for transient failures (optional, default: 3)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.notion.com/v1"
DEFAULT_NOTION_VERSION = "2022-06-28"


@dataclass
class Config:
    notion_token: str
    api_url: str = DEFAULT_API_URL
    notion_version: str = DEFAULT_NOTION_VERSION
    debug: bool = False
    max_parallel_requests: int = 5
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    rate_limit_requests: int = 3
    rate_limit_window: float = 1.0
    page_size: int = 100


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If URL format is invalid, the token is empty or a
            numeric limit is out of range.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid Notion API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid Notion API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.notion_token.strip():
        raise ValueError(
            "Notion token cannot be empty. Set NOTION_TOKEN environment variable."
        )

    if not (1 <= config.page_size <= 100):
        raise ValueError(
            f"Invalid page_size {config.page_size}: Notion allows 1-100"
        )

    if config.api_url.startswith("http://"):
        logger.warning(
            "WARNING: Notion API URL is not using TLS. Use only for development."
        )


def _int_env(name: str, low: int, high: int) -> int | None:
    """Read an integer env var within [low, high], or None if unset."""
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {name} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {name} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    token: str | None = None,
    api_url: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override Notion token.
        api_url: Override API base URL.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML ``notion`` section.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the token is missing after checking all sources or
            any value is invalid.
    """
    fb = yaml_fallbacks or {}

    notion_token = token or os.getenv("NOTION_TOKEN") or fb.get("token")
    if not notion_token:
        raise ValueError(
            "Notion token not found. Set NOTION_TOKEN environment variable, "
            "pass --token CLI argument, or add 'token' to config.yml."
        )

    final_url = (
        api_url
        or os.getenv("NOTION_API_URL")
        or fb.get("api_url")
        or DEFAULT_API_URL
    )

    if debug:
        final_debug = True
    else:
        env_debug = os.getenv("NOTION_DEBUG")
        if env_debug is not None:
            final_debug = env_debug.lower() in ("true", "1", "yes", "on")
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields: env > YAML > default ---

    max_parallel = _int_env("NOTION_MAX_PARALLEL_REQUESTS", 1, 10)
    if max_parallel is None:
        max_parallel = int(fb.get("max_parallel_requests", 5))

    max_retries = _int_env("NOTION_MAX_RETRIES", 0, 10)
    if max_retries is None:
        max_retries = int(fb.get("max_retries", 3))

    config = Config(
        notion_token=notion_token.strip(),
        api_url=final_url,
        notion_version=fb.get("notion_version", DEFAULT_NOTION_VERSION),
        debug=final_debug,
        max_parallel_requests=max_parallel,
        max_retries=max_retries,
        base_delay=float(fb.get("base_delay", 1.0)),
        max_delay=float(fb.get("max_delay", 60.0)),
        rate_limit_requests=int(fb.get("rate_limit_requests", 3)),
        rate_limit_window=float(fb.get("rate_limit_window", 1.0)),
        page_size=int(fb.get("page_size", 100)),
    )

    validate_config(config)

    return config
