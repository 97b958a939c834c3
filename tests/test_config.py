"""
Tests for intuneappbuilder.config.loader module.

Tests settings loading and merging including:
- Built-in defaults
- YAML overlay merging (dicts merge, lists replace)
- Validation of values
- Error handling
"""

from __future__ import annotations

import pytest

from intuneappbuilder.config import DEFAULT_SETTINGS, load_settings
from intuneappbuilder.exceptions import ConfigError

pytestmark = pytest.mark.unit


class TestDefaults:
    """Tests for built-in defaults."""

    def test_defaults_without_file(self):
        """Test that no settings file yields the built-in defaults."""
        settings = load_settings()

        assert settings.graph.base_url == "https://graph.microsoft.com/beta"
        assert settings.graph.timeout == 60
        assert settings.upload.chunk_size == 25 * 1024 * 1024
        assert settings.upload.renewal_interval == 450
        assert settings.upload.retry_delay == 10
        assert settings.upload.max_attempts == 30
        assert settings.upload.retryable_statuses == (307, 400, 403)
        assert settings.lifecycle.poll_interval == 2
        assert settings.lifecycle.timeout == 600
        assert settings.content_file.create_retries == 10
        assert settings.content_file.create_retry_delay == 30
        assert settings.source is None

    def test_defaults_not_mutated(self, create_yaml_file):
        """Test that loading a file leaves DEFAULT_SETTINGS untouched."""
        path = create_yaml_file("s.yaml", {"upload": {"retryable_statuses": [403]}})
        load_settings(path)

        assert DEFAULT_SETTINGS["upload"]["retryable_statuses"] == [307, 400, 403]


class TestOverlay:
    """Tests for merging a settings file."""

    def test_partial_override(self, create_yaml_file):
        """Test that a file overrides only the keys it names."""
        path = create_yaml_file(
            "settings.yaml",
            {"upload": {"chunk_size": 4194304, "retry_delay": 1}, "lifecycle": {"timeout": 900}},
        )

        settings = load_settings(path)

        assert settings.upload.chunk_size == 4194304
        assert settings.upload.retry_delay == 1
        assert settings.upload.max_attempts == 30
        assert settings.lifecycle.timeout == 900
        assert settings.lifecycle.poll_interval == 2
        assert settings.source == path.resolve()

    def test_list_replaced(self, create_yaml_file):
        """Test that lists replace the default instead of extending it."""
        path = create_yaml_file("s.yaml", {"upload": {"retryable_statuses": [403]}})
        assert load_settings(path).upload.retryable_statuses == (403,)

    def test_base_url_trailing_slash(self, create_yaml_file):
        """Test that a trailing slash on the base URL is dropped."""
        path = create_yaml_file(
            "s.yaml", {"graph": {"base_url": "https://graph.microsoft.com/v1.0/"}}
        )
        assert load_settings(path).graph.base_url == "https://graph.microsoft.com/v1.0"


class TestErrors:
    """Tests for invalid settings files."""

    def test_missing_file(self, tmp_path):
        """Test that a missing settings file raises ConfigError."""
        with pytest.raises(ConfigError, match="file not found"):
            load_settings(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path):
        """Test that an empty settings file raises ConfigError."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ConfigError, match="empty"):
            load_settings(path)

    def test_invalid_yaml(self, tmp_path):
        """Test that malformed YAML raises ConfigError."""
        path = tmp_path / "bad.yaml"
        path.write_text("upload: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="Error parsing YAML"):
            load_settings(path)

    def test_top_level_list(self, tmp_path):
        """Test that a non-mapping document raises ConfigError."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="mapping"):
            load_settings(path)

    @pytest.mark.parametrize(
        "overlay, message",
        [
            ({"upload": {"chunk_size": 0}}, "upload.chunk_size"),
            ({"upload": {"chunk_size": 1.5}}, "must be an integer"),
            ({"upload": {"max_attempts": True}}, "upload.max_attempts"),
            ({"lifecycle": {"timeout": -1}}, "lifecycle.timeout"),
            ({"lifecycle": {"poll_interval": "fast"}}, "must be a number"),
            ({"upload": {"retryable_statuses": "403"}}, "retryable_statuses"),
            ({"graph": {"base_url": "http://graph.local"}}, "https"),
            ({"content_file": "none"}, "'content_file' must be a mapping"),
        ],
    )
    def test_invalid_values(self, create_yaml_file, overlay, message):
        """Test that invalid values raise ConfigError naming the key."""
        path = create_yaml_file("s.yaml", overlay)

        with pytest.raises(ConfigError, match=message):
            load_settings(path)
