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

"""Portal package assembly.

The portal package is the .intunewin file that can be uploaded manually in
the Intune admin center. It is an uncompressed zip with two entries:

    IntuneWinPackage/Contents/IntunePackage.intunewin   (encrypted container)
    IntuneWinPackage/Metadata/Detection.xml             (detection document)

The detection document carries the display name, sizes, setup file, the
encryption envelope and, for MSI sources, the MSI manifest fields.

Example:
    ```python
    from intuneappbuilder.build.portal import build_portal_package

    with package, open("Setup.portal.intunewin", "wb") as out:
        build_portal_package(package, out)
    ```
"""

from __future__ import annotations

import shutil
from typing import BinaryIO
from xml.etree import ElementTree as ET
import zipfile

from intuneappbuilder.models import MsiManifest, Package

TOOL_VERSION = "1.4.0.0"
PACKAGE_FILE_NAME = "IntunePackage.intunewin"
CONTENTS_ENTRY = f"IntuneWinPackage/Contents/{PACKAGE_FILE_NAME}"
DETECTION_ENTRY = "IntuneWinPackage/Metadata/Detection.xml"

# Envelope fields in the order IntuneWinAppUtil.exe writes Detection.xml.
_ENCRYPTION_FIELDS = (
    ("EncryptionKey", "encryptionKey"),
    ("MacKey", "macKey"),
    ("InitializationVector", "initializationVector"),
    ("Mac", "mac"),
    ("ProfileIdentifier", "profileIdentifier"),
    ("FileDigest", "fileDigest"),
    ("FileDigestAlgorithm", "fileDigestAlgorithm"),
)


def _text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    child = ET.SubElement(parent, tag)
    child.text = value
    return child


def build_detection_xml(package: Package) -> bytes:
    """Render the Detection.xml document for a package.

    Output has no XML declaration, two-space indentation and CRLF line
    endings.
    """
    root = ET.Element("ApplicationInfo", {"ToolVersion": TOOL_VERSION})
    _text(root, "Name", package.app.display_name)
    _text(root, "UnencryptedContentSize", str(package.file.size))
    _text(root, "FileName", PACKAGE_FILE_NAME)
    _text(root, "SetupFile", package.app.setup_file)

    encryption = ET.SubElement(root, "EncryptionInfo")
    envelope = package.envelope.to_dict()
    for tag, key in _ENCRYPTION_FIELDS:
        _text(encryption, tag, envelope[key])

    if package.file.manifest is not None:
        msi_info = ET.SubElement(root, "MsiInfo")
        for tag, value in MsiManifest.from_bytes(package.file.manifest).items():
            _text(msi_info, tag, value)

    ET.indent(root, space="  ")
    document = ET.tostring(root, encoding="unicode")
    return document.replace("\n", "\r\n").encode("utf-8")


def build_portal_package(package: Package, output: BinaryIO) -> None:
    """Write the portal zip for a package to output.

    The package data stream is copied from position 0 and rewound
    afterwards, so the package stays usable for publishing.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    logger.verbose("PACKAGE", f"Assembling portal package for {package.app.display_name}")

    with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_STORED) as zf:
        package.data.seek(0)
        force_zip64 = package.file.size_encrypted >= zipfile.ZIP64_LIMIT
        with zf.open(CONTENTS_ENTRY, "w", force_zip64=force_zip64) as entry:
            shutil.copyfileobj(package.data, entry)
        package.data.seek(0)
        zf.writestr(DETECTION_ENTRY, build_detection_xml(package))

    logger.debug("PACKAGE", f"Wrote {CONTENTS_ENTRY} and {DETECTION_ENTRY}")
