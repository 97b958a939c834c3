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

""".intunewin package generation for intuneappbuilder.

This module turns a source file or directory into a Package and persists
packages as three artifacts sharing a base name:

    {base}.intunewin.json     companion metadata (app, encryptionInfo, file)
    {base}.intunewin          raw encrypted container
    {base}.portal.intunewin   portal zip for manual upload

The base name is the stem of the app's file name.

Design Principles:
    - Directories are zipped (deflate) to a temporary file which becomes the
      encryption input; the temporary zip is removed once encrypted
    - A directory's setup file is its first .msi (sorted by name), else its
      first .exe; with neither, the intermediate zip itself is the setup file
    - An MSI source with readable metadata becomes a windowsMobileMSI app;
      everything else (including a zipped directory with an MSI) becomes a
      win32LobApp
    - The container size is checked against the plaintext size before a
      package is returned or read back

Example:
    Basic usage:
        ```python
        from pathlib import Path
        from intuneappbuilder.build.packager import build_package, write_package_files

        with build_package(Path("installers/Setup.msi")) as package:
            files = write_package_files(package, Path("out"))
        print(files.metadata_path)
        ```
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
import shutil
import tempfile
from typing import BinaryIO
import zipfile

from intuneappbuilder.build.encryptor import (
    check_encrypted_size,
    encrypt_file,
    verify_container,
)
from intuneappbuilder.build.portal import build_portal_package
from intuneappbuilder.exceptions import (
    ConfigError,
    IntegrityError,
    PackagingError,
    SourceNotFoundError,
)
from intuneappbuilder.models import (
    WIN32_LOB_APP,
    WINDOWS_MOBILE_MSI,
    AppDescriptor,
    ContentFileInfo,
    EncryptionEnvelope,
    MsiPackageType,
    Package,
)
from intuneappbuilder.msi import InstallerMetadataReader, MsiMetadata

METADATA_SUFFIX = ".intunewin.json"
PACKAGE_SUFFIX = ".intunewin"
PORTAL_SUFFIX = ".portal.intunewin"


@dataclass(frozen=True)
class PackageFiles:
    """Paths of the three artifacts written for one package."""

    metadata_path: Path
    package_path: Path
    portal_path: Path


def _select_setup_file(source_dir: Path, setup_file: str | None) -> Path | None:
    """Pick the setup file for a directory source.

    Returns:
        The explicit setup file, else the first .msi, else the first .exe
        (by name), or None when the directory holds neither.

    Raises:
        ConfigError: If an explicit setup file is missing or not inside the
            directory.
    """
    from intuneappbuilder.logging import get_global_logger

    if setup_file:
        candidate = Path(setup_file)
        if not candidate.is_absolute():
            candidate = source_dir / candidate
        candidate = candidate.resolve()
        if not candidate.is_file():
            raise ConfigError(f"Setup file not found: {candidate}")
        if source_dir not in candidate.parents:
            raise ConfigError(
                f"Setup file {candidate} is not inside source directory {source_dir}"
            )
        return candidate

    files = sorted(p for p in source_dir.iterdir() if p.is_file())
    msis = [p for p in files if p.suffix.lower() == ".msi"]
    candidates = msis or [p for p in files if p.suffix.lower() == ".exe"]
    if not candidates:
        return None
    if len(candidates) > 1:
        names = ", ".join(p.name for p in candidates)
        get_global_logger().verbose(
            "PACKAGE",
            f"Several setup file candidates ({names}), using {candidates[0].name}",
        )
    return candidates[0]


def _zip_directory(source_dir: Path, destination: Path) -> None:
    with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(source_dir.rglob("*")):
            if path.is_file():
                zf.write(path, path.relative_to(source_dir).as_posix())


def _describe_app(
    name: str,
    setup_path: Path,
    metadata: MsiMetadata | None,
    zipped: bool,
) -> AppDescriptor:
    info = metadata.information if metadata else None
    display_name = (info.product_name if info else None) or name
    publisher = info.publisher if info else None

    if info is not None and not zipped:
        return AppDescriptor(
            odata_type=WINDOWS_MOBILE_MSI,
            display_name=display_name,
            publisher=publisher,
            file_name=setup_path.name,
            product_code=info.product_code,
            product_version=info.product_version,
        )

    per_user = info is not None and info.package_type is MsiPackageType.PER_USER
    return AppDescriptor(
        odata_type=WIN32_LOB_APP,
        display_name=display_name,
        publisher=publisher,
        file_name=f"{name}{PACKAGE_SUFFIX}",
        setup_file_path=setup_path.name,
        msi_information=info,
        run_as_account="user" if per_user else "system",
    )


def build_package(
    source: Path,
    *,
    setup_file: str | None = None,
    reader: InstallerMetadataReader | None = None,
) -> Package:
    """Build an encrypted package from a file or directory.

    Args:
        source: Setup file, or a directory holding the app content.
        setup_file: Setup file inside a directory source. Defaults to the
            directory's first .msi, else its first .exe, else the
            intermediate zip.
        reader: Installer metadata reader. Defaults to the best reader for
            this host.

    Returns:
        The package. The caller owns it and must close it (or use it as a
        context manager) to release the temporary data file.

    Raises:
        SourceNotFoundError: If the source does not exist.
        ConfigError: If an explicit setup file is invalid.
        PackagingError: If encryption or metadata reading fails.
        IntegrityError: If the container size does not match.
    """
    from intuneappbuilder.logging import get_global_logger
    from intuneappbuilder.msi import get_default_reader

    logger = get_global_logger()
    source = Path(source).resolve()
    if not source.exists():
        raise SourceNotFoundError(source)
    if reader is None:
        reader = get_default_reader()

    logger.verbose("PACKAGE", f"Creating Intune app package from {source}")

    temp_zip: Path | None = None
    if source.is_dir():
        name = source.name
        selected = _select_setup_file(source, setup_file)
        fd, temp_name = tempfile.mkstemp(suffix=f".{name}.intunewin.zip")
        os.close(fd)
        temp_zip = Path(temp_name)
        logger.verbose("PACKAGE", f"Creating intermediate zip of {source}")
        _zip_directory(source, temp_zip)
        content_path = temp_zip
        if selected is None:
            logger.verbose(
                "PACKAGE",
                f"No .msi or .exe in {source}, using {temp_zip.name} as setup file",
            )
        setup_path = selected or temp_zip
    else:
        if setup_file:
            raise ConfigError("A setup file can only be given for directory sources")
        name = source.stem
        setup_path = source
        content_path = source

    data: BinaryIO = tempfile.TemporaryFile()
    try:
        envelope = encrypt_file(content_path, data)
        size = content_path.stat().st_size
        size_encrypted = data.seek(0, os.SEEK_END)
        data.seek(0)
        check_encrypted_size(size, size_encrypted)

        metadata = reader.read(setup_path)
        app = _describe_app(name, setup_path, metadata, zipped=temp_zip is not None)
        file = ContentFileInfo(
            name=app.file_name,
            size=size,
            size_encrypted=size_encrypted,
            manifest=metadata.manifest.to_bytes() if metadata else None,
        )
    except BaseException:
        data.close()
        raise
    finally:
        if temp_zip is not None:
            temp_zip.unlink(missing_ok=True)

    logger.verbose(
        "PACKAGE",
        f"Created {app.app_type} package '{app.display_name}' "
        f"({size} bytes, {size_encrypted} encrypted)",
    )
    return Package(app=app, envelope=envelope, file=file, data=data)


def package_base_name(package: Package) -> str:
    """Base name shared by a package's artifacts."""
    return Path(package.app.file_name).stem


def write_package_files(package: Package, output_dir: Path) -> PackageFiles:
    """Write the companion JSON, raw container and portal zip for a package.

    Args:
        package: Package to persist. Its data stream is rewound afterwards.
        output_dir: Directory for the artifacts (created if missing).

    Returns:
        Paths of the written artifacts.

    Raises:
        PackagingError: If an artifact cannot be written.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    base = package_base_name(package)
    output_dir = Path(output_dir)
    files = PackageFiles(
        metadata_path=output_dir / f"{base}{METADATA_SUFFIX}",
        package_path=output_dir / f"{base}{PACKAGE_SUFFIX}",
        portal_path=output_dir / f"{base}{PORTAL_SUFFIX}",
    )

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        files.metadata_path.write_text(
            json.dumps(package.to_dict(), indent=2), encoding="utf-8"
        )
        logger.verbose("PACKAGE", f"[OK] Wrote {files.metadata_path.name}")

        package.data.seek(0)
        with files.package_path.open("wb") as out:
            shutil.copyfileobj(package.data, out)
        package.data.seek(0)
        logger.verbose("PACKAGE", f"[OK] Wrote {files.package_path.name}")

        with files.portal_path.open("wb") as out:
            build_portal_package(package, out)
        logger.verbose("PACKAGE", f"[OK] Wrote {files.portal_path.name}")
    except OSError as err:
        raise PackagingError(f"Failed to write package files to {output_dir}: {err}") from err

    return files


def read_package(metadata_path: Path) -> Package:
    """Load a package from its companion JSON and raw container.

    The container is expected next to the JSON file, at the same path
    without the trailing ".json". It is checked for size and MAC before the
    package is returned.

    Raises:
        SourceNotFoundError: If either file is missing.
        PackagingError: If the JSON is invalid.
        IntegrityError: If the container fails size or MAC verification.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    metadata_path = Path(metadata_path)
    if not metadata_path.is_file():
        raise SourceNotFoundError(metadata_path)
    if not metadata_path.name.endswith(".json"):
        raise PackagingError(f"Package metadata must be a .json file: {metadata_path}")
    data_path = metadata_path.with_name(metadata_path.name[: -len(".json")])
    if not data_path.is_file():
        raise SourceNotFoundError(data_path, f"Could not find package data {data_path}")

    try:
        raw = json.loads(metadata_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as err:
        raise PackagingError(f"Invalid package metadata {metadata_path}: {err}") from err
    if not isinstance(raw, dict):
        raise PackagingError(f"Package metadata must be a JSON object: {metadata_path}")
    for key in ("app", "encryptionInfo", "file"):
        if not isinstance(raw.get(key), dict):
            raise PackagingError(f"Package metadata {metadata_path} is missing '{key}'")

    app = AppDescriptor.from_dict(raw["app"])
    envelope = EncryptionEnvelope.from_dict(raw["encryptionInfo"])
    file = ContentFileInfo.from_dict(raw["file"])

    data = data_path.open("rb")
    try:
        size_encrypted = data.seek(0, os.SEEK_END)
        data.seek(0)
        if size_encrypted != file.size_encrypted:
            raise IntegrityError(
                f"{data_path} is {size_encrypted} bytes but its metadata "
                f"records {file.size_encrypted}"
            )
        check_encrypted_size(file.size, size_encrypted)
        verify_container(data, envelope)
    except BaseException:
        data.close()
        raise

    logger.verbose("PACKAGE", f"Loaded package '{app.display_name}' from {metadata_path}")
    return Package(app=app, envelope=envelope, file=file, data=data)


def find_package_files(source: Path) -> list[Path]:
    """Return companion JSON files for a file or a directory (recursive)."""
    source = Path(source)
    if source.is_dir():
        return sorted(source.rglob(f"*{METADATA_SUFFIX}"))
    if not source.exists():
        raise SourceNotFoundError(source)
    return [source]
