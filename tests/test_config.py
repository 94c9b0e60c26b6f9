"""Tests for notion_mirror.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the standalone
server bootstrap path: validate_config() and load_config().
"""

import logging

import pytest

from notion_mirror.config import (
    DEFAULT_API_URL,
    Config,
    load_config,
    validate_config,
)

ENV_VARS = (
    "NOTION_TOKEN",
    "NOTION_API_URL",
    "NOTION_DEBUG",
    "NOTION_MAX_PARALLEL_REQUESTS",
    "NOTION_MAX_RETRIES",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every NOTION_* variable a developer .env may have set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config(): URL format and token checks."""

    def test_valid_config(self):
        validate_config(Config(notion_token="secret_x"))

    def test_invalid_url_no_scheme(self):
        config = Config(notion_token="secret_x", api_url="api.notion.com")
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(config)

    def test_empty_host(self):
        config = Config(notion_token="secret_x", api_url="https://")
        with pytest.raises(ValueError, match="hostname"):
            validate_config(config)

    def test_empty_token(self):
        config = Config(notion_token="   ")
        with pytest.raises(ValueError, match="token cannot be empty"):
            validate_config(config)

    def test_trailing_slash_stripped(self):
        config = Config(
            notion_token="secret_x", api_url="https://api.notion.com/v1/"
        )
        validate_config(config)
        assert config.api_url == "https://api.notion.com/v1"

    def test_whitespace_url_stripped_before_scheme_check(self):
        config = Config(
            notion_token="secret_x", api_url="  https://api.notion.com/v1 "
        )
        validate_config(config)
        assert config.api_url == "https://api.notion.com/v1"

    @pytest.mark.parametrize("page_size", [0, 101])
    def test_page_size_out_of_range(self, page_size):
        config = Config(notion_token="secret_x", page_size=page_size)
        with pytest.raises(ValueError, match="page_size"):
            validate_config(config)

    def test_plain_http_logs_warning(self, caplog):
        config = Config(
            notion_token="secret_x", api_url="http://localhost:8080/v1"
        )
        with caplog.at_level(logging.WARNING):
            validate_config(config)
        assert "not using TLS" in caplog.text

    def test_https_no_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            validate_config(Config(notion_token="secret_x"))
        assert "TLS" not in caplog.text


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence and env parsing."""

    def test_load_from_env_vars(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        config = load_config()
        assert config.notion_token == "secret_env"
        assert config.api_url == DEFAULT_API_URL
        assert config.max_parallel_requests == 5
        assert config.max_retries == 3

    def test_cli_args_override_env(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_API_URL", "https://env.example/v1")
        config = load_config(
            token="secret_cli", api_url="https://cli.example/v1"
        )
        assert config.notion_token == "secret_cli"
        assert config.api_url == "https://cli.example/v1"

    def test_env_overrides_yaml(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_MAX_RETRIES", "7")
        config = load_config(
            yaml_fallbacks={"token": "secret_yaml", "max_retries": 1}
        )
        assert config.notion_token == "secret_env"
        assert config.max_retries == 7

    def test_yaml_fallbacks_used(self, clean_env):
        config = load_config(
            yaml_fallbacks={
                "token": "secret_yaml",
                "api_url": "https://yaml.example/v1",
                "max_parallel_requests": 8,
                "page_size": 50,
                "rate_limit_requests": 0,
            }
        )
        assert config.notion_token == "secret_yaml"
        assert config.api_url == "https://yaml.example/v1"
        assert config.max_parallel_requests == 8
        assert config.page_size == 50
        assert config.rate_limit_requests == 0

    def test_missing_token_raises(self, clean_env):
        with pytest.raises(ValueError, match="Notion token not found"):
            load_config()

    def test_debug_from_env(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_DEBUG", "yes")
        assert load_config().debug is True

    def test_debug_env_false_beats_yaml(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_DEBUG", "0")
        assert load_config(yaml_fallbacks={"debug": True}).debug is False

    def test_debug_cli_flag_wins(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_DEBUG", "false")
        assert load_config(debug=True).debug is True

    def test_max_parallel_from_env(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_MAX_PARALLEL_REQUESTS", "10")
        assert load_config().max_parallel_requests == 10

    @pytest.mark.parametrize("raw", ["abc", "0", "11", "-2"])
    def test_max_parallel_invalid(self, clean_env, raw):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_MAX_PARALLEL_REQUESTS", raw)
        with pytest.raises(
            ValueError, match="NOTION_MAX_PARALLEL_REQUESTS"
        ):
            load_config()

    def test_max_retries_zero_allowed(self, clean_env):
        clean_env.setenv("NOTION_TOKEN", "secret_env")
        clean_env.setenv("NOTION_MAX_RETRIES", "0")
        assert load_config().max_retries == 0

    def test_token_is_stripped(self, clean_env):
        assert load_config(token="  secret_x  ").notion_token == "secret_x"
