# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Settings loading and merging for intuneappbuilder.

Settings come from two layers:

    1. **Built-in defaults** (DEFAULT_SETTINGS in this module)
       - Graph endpoint, upload chunking, retry and polling timings

    2. **Settings file** (optional, passed with --config)
       - Any subset of the default sections
       - Overrides the built-in defaults

Merge Behavior:
    The loader performs deep merging with "last wins" semantics:

    - **Dicts**: Recursively merged (keys from overlay override base)
    - **Lists**: Completely replaced (NOT appended/extended)
    - **Scalars**: Overwritten (strings, numbers, booleans)

Example settings file:
    ```yaml
    upload:
      chunk_size: 8388608      # 8 MiB blocks
      retry_delay: 5
    lifecycle:
      timeout: 900
    ```

Example:
    Basic usage:
        ```python
        from pathlib import Path
        from intuneappbuilder.config import load_settings

        settings = load_settings(Path("settings.yaml"))
        print(settings.upload.chunk_size)
        ```
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from intuneappbuilder.exceptions import ConfigError

DEFAULT_SETTINGS: dict[str, Any] = {
    "graph": {
        "base_url": "https://graph.microsoft.com/beta",
        "timeout": 60,
    },
    "upload": {
        "chunk_size": 25 * 1024 * 1024,
        "renewal_interval": 450,
        "retry_delay": 10,
        "max_attempts": 30,
        "retryable_statuses": [307, 400, 403],
    },
    "lifecycle": {
        "poll_interval": 2,
        "timeout": 600,
    },
    "content_file": {
        "create_retries": 10,
        "create_retry_delay": 30,
    },
}

# -------------------------------
# Data types
# -------------------------------


@dataclass(frozen=True)
class GraphSettings:
    """Microsoft Graph endpoint settings."""

    base_url: str
    timeout: float


@dataclass(frozen=True)
class UploadSettings:
    """Block upload settings.

    Attributes:
        chunk_size: Block size in bytes.
        renewal_interval: Seconds after which the upload URI is renewed.
        retry_delay: Seconds to wait between attempts for one block.
        max_attempts: Total attempts allowed per block.
        retryable_statuses: HTTP statuses that cause a block to be retried.
    """

    chunk_size: int
    renewal_interval: float
    retry_delay: float
    max_attempts: int
    retryable_statuses: tuple[int, ...]


@dataclass(frozen=True)
class LifecycleSettings:
    """Upload-state polling settings, in seconds."""

    poll_interval: float
    timeout: float


@dataclass(frozen=True)
class ContentFileSettings:
    """Retry settings for content-file creation (HTTP 404 only)."""

    create_retries: int
    create_retry_delay: float


@dataclass(frozen=True)
class Settings:
    """Effective settings after merging defaults and the settings file."""

    graph: GraphSettings
    upload: UploadSettings
    lifecycle: LifecycleSettings
    content_file: ContentFileSettings
    source: Path | None = None


# -------------------------------
# YAML helpers
# -------------------------------


def _load_yaml_file(p: Path) -> Any:
    """Loads a YAML file and returns the parsed Python object.

    Args:
        p: Path to the YAML file to load.

    Returns:
        The parsed Python object from the YAML file.

    Raises:
        ConfigError: When file does not exist, invalid YAML (parse error), or
            empty files.
    """
    if not p.exists():
        raise ConfigError(f"file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    if data is None:
        raise ConfigError(f"YAML file is empty: {p}")
    return data


# -------------------------------
# Merge logic
# -------------------------------


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep-merges two dicts with "overlay wins" semantics.

    Merge behavior:

    - dict + dict -> deep merge
    - list + list -> overlay REPLACES base (not concatenated)
    - everything else -> overlay overwrites base

    This function does not mutate inputs; returns a new dict.

    Args:
        base: The base dictionary.
        overlay: The overlay dictionary that takes precedence.

    Returns:
        A new dictionary with the merged contents.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            # Replace lists and scalars entirely
            result[k] = v
    return result


# -------------------------------
# Validation
# -------------------------------


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    section = cfg.get(name)
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def _positive(section: dict[str, Any], path: str, key: str, kind: type) -> Any:
    """Reads a positive number from a section, raising ConfigError otherwise."""
    value = section.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{path}.{key}' must be a number, got {value!r}")
    if kind is int and not isinstance(value, int):
        raise ConfigError(f"'{path}.{key}' must be an integer, got {value!r}")
    if value <= 0:
        raise ConfigError(f"'{path}.{key}' must be positive, got {value!r}")
    return kind(value)


def _build_settings(cfg: dict[str, Any], source: Path | None) -> Settings:
    graph = _section(cfg, "graph")
    base_url = graph.get("base_url")
    if not isinstance(base_url, str) or not base_url.startswith("https://"):
        raise ConfigError(f"'graph.base_url' must be an https URL, got {base_url!r}")

    upload = _section(cfg, "upload")
    statuses = upload.get("retryable_statuses")
    if not isinstance(statuses, list) or not all(
        isinstance(s, int) and not isinstance(s, bool) for s in statuses
    ):
        raise ConfigError(
            f"'upload.retryable_statuses' must be a list of integers, got {statuses!r}"
        )

    lifecycle = _section(cfg, "lifecycle")
    content_file = _section(cfg, "content_file")

    return Settings(
        graph=GraphSettings(
            base_url=base_url.rstrip("/"),
            timeout=_positive(graph, "graph", "timeout", float),
        ),
        upload=UploadSettings(
            chunk_size=_positive(upload, "upload", "chunk_size", int),
            renewal_interval=_positive(upload, "upload", "renewal_interval", float),
            retry_delay=_positive(upload, "upload", "retry_delay", float),
            max_attempts=_positive(upload, "upload", "max_attempts", int),
            retryable_statuses=tuple(statuses),
        ),
        lifecycle=LifecycleSettings(
            poll_interval=_positive(lifecycle, "lifecycle", "poll_interval", float),
            timeout=_positive(lifecycle, "lifecycle", "timeout", float),
        ),
        content_file=ContentFileSettings(
            create_retries=_positive(
                content_file, "content_file", "create_retries", int
            ),
            create_retry_delay=_positive(
                content_file, "content_file", "create_retry_delay", float
            ),
        ),
        source=source,
    )


def _print_yaml_content(data: dict[str, Any], indent: int = 0) -> None:
    """Prints YAML content in a readable format (debug mode only)."""
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    yaml_str = yaml.dump(data, default_flow_style=False, sort_keys=False)
    for line in yaml_str.split("\n"):
        if line.strip():
            logger.debug("CONFIG", " " * indent + line)


# -------------------------------
# Public API
# -------------------------------


def load_settings(config_path: Path | None = None) -> Settings:
    """Loads the effective settings.

    Performs the following operations:

    1. Start from DEFAULT_SETTINGS
    2. Read the settings file, if one was given
    3. Merge: defaults -> file (dicts deep-merge, lists replace)
    4. Validate and convert to typed Settings

    Args:
        config_path: Optional path to a YAML settings file.

    Returns:
        The effective settings.

    Raises:
        ConfigError: On a missing file, YAML parse errors, empty files,
            invalid structure, or invalid values.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    merged: dict[str, Any] = _deep_merge_dicts({}, DEFAULT_SETTINGS)

    if config_path is not None:
        config_path = config_path.resolve()
        logger.verbose("CONFIG", f"Loading settings: {config_path}")
        overlay = _load_yaml_file(config_path)
        if not isinstance(overlay, dict):
            raise ConfigError(f"top-level YAML must be a mapping (dict): {config_path}")
        logger.debug("CONFIG", f"--- Content from {config_path.name} ---")
        _print_yaml_content(overlay)
        merged = _deep_merge_dicts(merged, overlay)
    else:
        logger.verbose("CONFIG", "No settings file given, using built-in defaults")

    logger.debug("CONFIG", "--- Effective Settings ---")
    _print_yaml_content(merged)

    return _build_settings(merged, config_path)
