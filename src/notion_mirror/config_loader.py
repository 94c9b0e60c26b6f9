"""
Hierarchical configuration loader for notion_mirror.

Finds YAML config files by convention, resolves ``!include`` directives,
interpolates ``${VAR}`` / ``${VAR:-default}`` and merges the files with
"project wins" semantics.

Usage:
    from notion_mirror.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
    token = raw.get("notion", {}).get("token")
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "NOTION_MIRROR_CONFIG"
PROJECT_DIR = ".notion_mirror"

# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    there is none.  A ``${`` without a closing brace is kept as is.
    """

    def _expand(match: re.Match) -> str:
        current = os.environ.get(match.group(1))
        if current:
            return current
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_expand, value)


def _interpolate(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {key: _interpolate(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate(val) for val in obj]
    return obj


# ---------------------------------------------------------------------------
# YAML !include support
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``yaml.SafeLoader`` with an ``!include`` tag.

    A subclass keeps the global ``SafeLoader`` untouched.  Each load
    carries the chain of files being included to catch cycles.
    """

    include_chain: tuple[Path, ...] = ()


def _include(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Load the file named by ``!include <path>``.

    Relative paths are resolved against the including file.
    """
    target = Path(loader.construct_scalar(node)).expanduser()
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    if target in loader.include_chain:
        chain = " -> ".join(str(p) for p in loader.include_chain + (target,))
        raise ValueError(f"Circular include detected: {chain}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml(target, _chain=loader.include_chain + (target,))


ConfigLoader.add_constructor("!include", _include)


def load_yaml(path: Path, *, _chain: tuple[Path, ...] = ()) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader.include_chain = _chain or (path,)
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. ``NOTION_MIRROR_CONFIG`` env var (explicit single path)
        2. ``.notion_mirror/config.yml`` in CWD (project-level)
        3. ``.notion_mirror/config.yaml`` in CWD
        4. ``~/.config/notion_mirror/config.yml`` (XDG global)
    """
    candidates: list[Path] = []

    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())

    project = Path.cwd() / PROJECT_DIR
    candidates.append(project / "config.yml")
    candidates.append(project / "config.yaml")
    candidates.append(
        Path.home() / ".config" / "notion_mirror" / "config.yml"
    )

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(
    paths: list[Path] | None = None,
) -> dict[str, Any]:
    """Load and merge config files.

    Files are applied from lowest to highest precedence; each file's
    top-level sections *replace* (not deep-merge) earlier ones.  Env var
    interpolation runs after the merge.

    Args:
        paths: Files in precedence order (highest first).  Defaults to
            ``discover_config_files()``.

    Returns:
        The merged dict, empty when there is nothing to load.
    """
    if paths is None:
        paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate(merged)
