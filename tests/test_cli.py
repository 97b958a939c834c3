"""
Tests for intuneappbuilder.cli module.

Tests the iab command line including:
- Argument parsing for pack and publish
- Result output and exit codes
- Error reporting
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from intuneappbuilder.cli import main
from intuneappbuilder.exceptions import UploadTimeoutError
from intuneappbuilder.results import PublishResult

pytestmark = pytest.mark.unit


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestPackCommand:
    """Tests for 'iab pack'."""

    def test_pack_success(self, setup_exe, tmp_path, capsys):
        """Test that pack writes the artifacts and reports success."""
        out = tmp_path / "out"

        code = _run(["pack", "-s", str(setup_exe), "-o", str(out)])

        captured = capsys.readouterr().out
        assert code == 0
        assert "PACK RESULTS" in captured
        assert "[SUCCESS] 1 package(s) created successfully!" in captured
        assert (out / "Setup.intunewin.json").exists()
        assert (out / "Setup.intunewin").exists()
        assert (out / "Setup.portal.intunewin").exists()

    def test_pack_multiple_sources(self, setup_exe, tmp_path, capsys):
        """Test that --source can be repeated."""
        other = tmp_path / "Other.exe"
        other.write_bytes(b"other")

        code = _run(
            ["pack", "-s", str(setup_exe), "-s", str(other), "-o", str(tmp_path / "o")]
        )

        assert code == 0
        assert "[SUCCESS] 2 package(s)" in capsys.readouterr().out

    def test_pack_missing_source(self, tmp_path, capsys):
        """Test that a missing source prints an error and exits 1."""
        code = _run(["pack", "-s", str(tmp_path / "missing.exe")])

        assert code == 1
        assert "Error: Could not find source file" in capsys.readouterr().out

    def test_pack_script_only_directory(self, tmp_path, capsys):
        """Test that a directory without .msi or .exe packs."""
        app_dir = tmp_path / "App"
        app_dir.mkdir()
        (app_dir / "install.ps1").write_bytes(b"Write-Output 'ok'")

        code = _run(["pack", "-s", str(app_dir), "-o", str(tmp_path / "out")])

        assert code == 0
        assert (tmp_path / "out" / "App.intunewin.json").exists()

    def test_pack_missing_setup_file(self, tmp_path, capsys):
        """Test that a --setup-file not in the directory is an error."""
        app_dir = tmp_path / "App"
        app_dir.mkdir()
        (app_dir / "a.exe").write_bytes(b"a")

        code = _run(
            ["pack", "-s", str(app_dir), "--setup-file", "b.exe", "-o", str(tmp_path)]
        )

        assert code == 1
        assert "Setup file not found" in capsys.readouterr().out

    def test_pack_requires_source(self):
        """Test that argparse rejects pack without --source."""
        assert _run(["pack"]) == 2


class TestPublishCommand:
    """Tests for 'iab publish'."""

    def _packed(self, setup_exe: Path, tmp_path: Path) -> Path:
        out = tmp_path / "out"
        assert _run(["pack", "-s", str(setup_exe), "-o", str(out)]) == 0
        return out

    def test_publish_success(self, setup_exe, tmp_path, capsys):
        """Test that every packed package in a directory is published."""
        out = self._packed(setup_exe, tmp_path)
        capsys.readouterr()
        result = PublishResult(
            app_id="app-1",
            display_name="Setup",
            content_version_id="1",
            file_id="f1",
            block_count=1,
            created_app=True,
            status="success",
        )

        with patch("intuneappbuilder.cli.publish_package", return_value=result) as mock:
            code = _run(["publish", "-s", str(out), "--token", "tok"])

        captured = capsys.readouterr().out
        assert code == 0
        assert mock.call_count == 1
        package = mock.call_args.args[0]
        assert package.app.display_name == "Setup"
        assert package.data.closed
        assert "PUBLISH RESULTS" in captured
        assert "Setup (created)" in captured
        assert "[SUCCESS] 1 package(s) published successfully!" in captured

    def test_publish_empty_directory(self, tmp_path, capsys):
        """Test that a directory without packages is an error."""
        code = _run(["publish", "-s", str(tmp_path), "--token", "tok"])

        assert code == 1
        assert "No .intunewin.json files found" in capsys.readouterr().out

    def test_publish_error_reported(self, setup_exe, tmp_path, capsys):
        """Test that publish errors print a message and exit 1."""
        out = self._packed(setup_exe, tmp_path)
        capsys.readouterr()
        error = UploadTimeoutError("commitFilePending", "commitFileSuccess", 601)

        with patch("intuneappbuilder.cli.publish_package", side_effect=error):
            code = _run(["publish", "-s", str(out), "--token", "tok"])

        assert code == 1
        assert "Error: Timed out after 601s" in capsys.readouterr().out

    def test_publish_bad_config(self, setup_exe, tmp_path, capsys):
        """Test that an invalid settings file is reported."""
        out = self._packed(setup_exe, tmp_path)
        config = tmp_path / "settings.yaml"
        config.write_text("upload:\n  chunk_size: 0\n", encoding="utf-8")
        capsys.readouterr()

        code = _run(["publish", "-s", str(out), "--config", str(config), "--token", "t"])

        assert code == 1
        assert "upload.chunk_size" in capsys.readouterr().out
