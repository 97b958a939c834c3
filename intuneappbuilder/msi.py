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

"""MSI metadata extraction for intuneappbuilder.

This module reads the Property table and summary information of Windows
Installer (MSI) files and turns them into the MsiInformation and MsiManifest
used when packaging. Reading is behind the InstallerMetadataReader protocol
so callers never depend on a particular platform tool.

Backend Priority:

On Windows:

1. PowerShell COM (WindowsInstaller.Installer, always available)

On Linux/macOS:

1. msiinfo (from msitools package, must be installed separately)

When no backend exists, get_default_reader() returns an
UnavailableMetadataReader, which reports no metadata. The source is then
packaged as an opaque file (a win32LobApp without MSI information).

Installation Requirements:

Linux/macOS:

- Install msitools package:
    - Debian/Ubuntu: `sudo apt-get install msitools`
    - RHEL/Fedora: `sudo dnf install msitools`
    - macOS: `brew install msitools`

Example:
    Read metadata from an MSI:

        from pathlib import Path
        from intuneappbuilder.msi import get_default_reader

        metadata = get_default_reader().read(Path("chrome.msi"))
        if metadata is not None:
            print(metadata.information.product_code)

Note:
    This is pure file introspection; no network calls are made. Errors are
    chained for debugging (check 'from err' clause).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
import shutil
import subprocess
import sys
from typing import Protocol

from intuneappbuilder.exceptions import PackagingError, SourceNotFoundError
from intuneappbuilder.models import MsiInformation, MsiManifest, MsiPackageType

# Summary information property ids used as fallbacks
SUMMARY_SUBJECT = 3
SUMMARY_AUTHOR = 4

_EXECUTION_CONTEXT = {
    MsiPackageType.PER_USER: "User",
    MsiPackageType.PER_MACHINE: "System",
}


@dataclass(frozen=True)
class MsiMetadata:
    """Metadata read from one MSI file."""

    information: MsiInformation
    manifest: MsiManifest


class InstallerMetadataReader(Protocol):
    """Capability interface for reading installer metadata."""

    def read(self, path: Path) -> MsiMetadata | None:
        """Read metadata for a setup file.

        Returns:
            The metadata, or None when the file should be treated as opaque
            (not an MSI, or no backend available).
        """
        ...


def _package_type(all_users: str | None) -> MsiPackageType:
    if not all_users:
        return MsiPackageType.PER_USER
    if all_users == "1":
        return MsiPackageType.PER_MACHINE
    if all_users == "2":
        return MsiPackageType.DUAL_PURPOSE
    raise PackagingError(f"Invalid ALLUSERS property value: {all_users}.")


def metadata_from_properties(
    properties: dict[str, str], summary: dict[int, str] | None = None
) -> MsiMetadata:
    """Build MSI metadata from raw Property table rows and summary info.

    Args:
        properties: Property name to value (values are stripped).
        summary: Summary information property id to value.

    Returns:
        The derived MsiInformation and MsiManifest.

    Raises:
        PackagingError: If ProductCode or ProductVersion is missing, or
            ALLUSERS holds an unsupported value.
    """
    summary = summary or {}
    props = {k: v.strip() for k, v in properties.items() if v is not None}

    for required in ("ProductCode", "ProductVersion"):
        if not props.get(required):
            raise PackagingError(f"Property not found: {required}.")

    package_type = _package_type(props.get("ALLUSERS"))
    per_user_flag = bool(props.get("MSIINSTALLPERUSER"))
    dual_per_user = package_type is MsiPackageType.DUAL_PURPOSE and per_user_flag
    reboot = props.get("REBOOT") or ""

    information = MsiInformation(
        product_code=props["ProductCode"],
        product_version=props["ProductVersion"],
        upgrade_code=props.get("UpgradeCode") or None,
        requires_reboot=reboot[:1] == "F",
        package_type=package_type,
        product_name=props.get("ProductName") or summary.get(SUMMARY_SUBJECT) or None,
        publisher=props.get("Manufacturer") or summary.get(SUMMARY_AUTHOR) or None,
    )
    manifest = MsiManifest(
        execution_context=_EXECUTION_CONTEXT.get(package_type, "Any"),
        requires_reboot=information.requires_reboot,
        upgrade_code=information.upgrade_code,
        is_machine_install=package_type is MsiPackageType.PER_MACHINE or dual_per_user,
        is_user_install=package_type is MsiPackageType.PER_USER or dual_per_user,
    )
    return MsiMetadata(information=information, manifest=manifest)


def _parse_tab_rows(output: str) -> dict[str, str]:
    rows: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.rstrip("\r").split("\t", 1)  # "Property<TAB>Value"
        if len(parts) == 2 and parts[0]:
            rows[parts[0]] = parts[1]
    return rows


_POWERSHELL_SCRIPT = """
$installer = New-Object -ComObject WindowsInstaller.Installer
$db = $installer.OpenDatabase('{path}', 0)
$view = $db.OpenView("SELECT Property, Value FROM Property")
$view.Execute()
while ($record = $view.Fetch()) {{
    "$($record.StringData(1))`t$($record.StringData(2))"
}}
$view.Close()
$summary = $db.SummaryInformation(0)
"#3`t$($summary.Property(3))"
"#4`t$($summary.Property(4))"
"""

# msiinfo suminfo labels for the summary ids used as fallbacks
_SUMINFO_LABELS = {"Subject": SUMMARY_SUBJECT, "Author": SUMMARY_AUTHOR}


class MsiMetadataReader:
    """Reads MSI metadata with PowerShell COM (Windows) or msiinfo.

    Args:
        runner: subprocess.run compatible callable.
        platform: Platform string (defaults to sys.platform).
        which: shutil.which compatible callable.
    """

    def __init__(
        self,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        platform: str | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._run = runner
        self._platform = platform or sys.platform
        self._which = which

    @property
    def is_windows(self) -> bool:
        return self._platform.startswith("win")

    def is_available(self) -> bool:
        if self.is_windows:
            return self._which("powershell") is not None
        return self._which("msiinfo") is not None

    def read(self, path: Path) -> MsiMetadata | None:
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        p = Path(path)
        if p.suffix.lower() != ".msi":
            return None
        if not p.is_file():
            raise SourceNotFoundError(p, f"MSI file was not found: {p}")

        if self.is_windows:
            logger.debug("MSI", "Trying backend: PowerShell COM...")
            properties, summary = self._query_powershell(p)
        else:
            msiinfo = self._which("msiinfo")
            if not msiinfo:
                logger.warning(
                    "MSI",
                    "msiinfo not found; install msitools to read MSI metadata. "
                    f"Packaging {p.name} without MSI information.",
                )
                return None
            logger.debug("MSI", "Trying backend: msiinfo (msitools)...")
            properties, summary = self._query_msiinfo(msiinfo, p)

        metadata = metadata_from_properties(properties, summary)
        logger.verbose(
            "MSI",
            f"Read {p.name}: {metadata.information.product_name} "
            f"{metadata.information.product_version} "
            f"({metadata.information.package_type.value})",
        )
        return metadata

    def _query_powershell(self, p: Path) -> tuple[dict[str, str], dict[int, str]]:
        script = _POWERSHELL_SCRIPT.format(path=str(p).replace("'", "''"))
        try:
            result = self._run(
                ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
                check=True,
                capture_output=True,
                text=True,
                timeout=30,
            )
        except subprocess.CalledProcessError as err:
            raise PackagingError(
                f"The specified Windows Installer file {p} could not be opened. "
                f"Verify the file is a valid Windows Installer file. ({err})"
            ) from err
        except subprocess.TimeoutExpired as err:
            raise PackagingError(f"PowerShell MSI query timed out for {p}") from err

        rows = _parse_tab_rows(result.stdout)
        summary = {
            int(key[1:]): value
            for key, value in rows.items()
            if key.startswith("#") and key[1:].isdigit() and value
        }
        properties = {k: v for k, v in rows.items() if not k.startswith("#")}
        return properties, summary

    def _query_msiinfo(
        self, msiinfo: str, p: Path
    ) -> tuple[dict[str, str], dict[int, str]]:
        try:
            # msiinfo export <package> Property -> stdout (tab-separated .idt)
            exported = self._run(
                [msiinfo, "export", str(p), "Property"],
                check=True,
                capture_output=True,
                text=True,
            )
            suminfo = self._run(
                [msiinfo, "suminfo", str(p)],
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as err:
            raise PackagingError(f"msiinfo failed for {p}: {err}") from err

        # .idt exports start with three header rows (names, types, table)
        lines = exported.stdout.splitlines()[3:]
        properties = _parse_tab_rows("\n".join(lines))

        summary: dict[int, str] = {}
        for line in suminfo.stdout.splitlines():
            label, sep, value = line.partition(":")
            if sep and label.strip() in _SUMINFO_LABELS and value.strip():
                summary[_SUMINFO_LABELS[label.strip()]] = value.strip()
        return properties, summary


class UnavailableMetadataReader:
    """Reader used when no MSI backend exists; always reports no metadata."""

    def read(self, path: Path) -> MsiMetadata | None:
        from intuneappbuilder.logging import get_global_logger

        if Path(path).suffix.lower() == ".msi":
            get_global_logger().warning(
                "MSI",
                "Could not read MSI metadata on this host. Ensure PowerShell is "
                "available on Windows or install 'msitools' on Linux/macOS.",
            )
        return None


def get_default_reader() -> InstallerMetadataReader:
    """Return the best metadata reader for this host."""
    reader = MsiMetadataReader()
    if reader.is_available():
        return reader
    return UnavailableMetadataReader()
