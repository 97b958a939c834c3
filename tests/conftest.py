"""
Pytest configuration and shared fixtures for intuneappbuilder tests.

This module provides reusable fixtures and test utilities used across
the test suite: a fake clock for time-based retry and polling logic,
a metadata reader that needs no msitools, and small ready-made packages.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from intuneappbuilder.build.packager import build_package
from intuneappbuilder.logging import SilentLogger, set_global_logger
from intuneappbuilder.models import ContentFile, Package, UploadState
from intuneappbuilder.msi import MsiMetadata, metadata_from_properties

GRAPH = "https://graph.microsoft.com/beta"
SAS_URI = "https://store.blob.core.windows.net/container/file?sv=2020&sig=abc"

MSI_PROPERTIES = {
    "ProductCode": "{11111111-2222-3333-4444-555555555555}",
    "ProductVersion": "1.2.3",
    "UpgradeCode": "{AAAAAAAA-BBBB-CCCC-DDDD-EEEEEEEEEEEE}",
    "ProductName": "Example App",
    "Manufacturer": "Example Corp",
    "ALLUSERS": "1",
}


class FakeClock:
    """Manual clock; sleep() advances time instead of blocking."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeReader:
    """Metadata reader returning fixed metadata for .msi files."""

    def __init__(self, metadata: MsiMetadata | None = None) -> None:
        self.metadata = metadata
        self.calls: list[Path] = []

    def read(self, path: Path) -> MsiMetadata | None:
        self.calls.append(Path(path))
        if Path(path).suffix.lower() != ".msi":
            return None
        return self.metadata


def content_file(
    state: UploadState | str,
    uri: str | None = SAS_URI,
    file_id: str = "file-1",
) -> ContentFile:
    """Build a ContentFile snapshot in the given state."""
    value = state.value if isinstance(state, UploadState) else state
    return ContentFile.from_dict(
        {"id": file_id, "uploadState": value, "azureStorageUri": uri}
    )


@pytest.fixture(autouse=True)
def silent_logger():
    """Reset the global logger so CLI tests don't leak verbosity."""
    set_global_logger(SilentLogger())
    yield
    set_global_logger(SilentLogger())


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a manual clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def create_yaml_file(tmp_path: Path):
    """
    Factory fixture for creating temporary YAML files.

    Usage:
        yaml_path = create_yaml_file("settings.yaml", {"upload": {"retry_delay": 5}})
    """

    def _create(filename: str, data: dict[str, Any]) -> Path:
        path = tmp_path / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.dump(data, f)
        return path

    return _create


@pytest.fixture
def msi_metadata() -> MsiMetadata:
    """Provide metadata for a per-machine MSI."""
    return metadata_from_properties(MSI_PROPERTIES, {})


@pytest.fixture
def msi_reader(msi_metadata: MsiMetadata) -> FakeReader:
    """Provide a reader that reports msi_metadata for any .msi file."""
    return FakeReader(msi_metadata)


@pytest.fixture
def opaque_reader() -> FakeReader:
    """Provide a reader that never finds metadata."""
    return FakeReader(None)


@pytest.fixture
def setup_exe(tmp_path: Path) -> Path:
    """Provide a 1000-byte setup executable."""
    path = tmp_path / "src" / "Setup.exe"
    path.parent.mkdir()
    path.write_bytes(bytes(range(256)) * 3 + b"x" * 232)
    return path


@pytest.fixture
def setup_msi(tmp_path: Path) -> Path:
    """Provide a fake .msi file (contents are never parsed in unit tests)."""
    path = tmp_path / "msi" / "Example.msi"
    path.parent.mkdir()
    path.write_bytes(b"MSI" * 100)
    return path


@pytest.fixture
def exe_package(setup_exe: Path, opaque_reader: FakeReader) -> Package:
    """Provide a win32 package built from setup_exe."""
    package = build_package(setup_exe, reader=opaque_reader)
    yield package
    package.close()


@pytest.fixture
def msi_package(setup_msi: Path, msi_reader: FakeReader) -> Package:
    """Provide a windowsMobileMSI package built from setup_msi."""
    package = build_package(setup_msi, reader=msi_reader)
    yield package
    package.close()
