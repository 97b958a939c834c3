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

"""Public API return types for intuneappbuilder.

This module defines dataclasses for return values from public API functions
(packing a source and publishing a package).

All dataclasses are frozen (immutable) to prevent accidental mutation of
return values.

Example:
    Using result types:
        ```python
        from pathlib import Path
        from intuneappbuilder.core import pack_source
        from intuneappbuilder.results import PackResult

        result: PackResult = pack_source(Path("setup.msi"), Path("./out"))
        print(result.package_path)  # Attribute access, not dict access
        ```

Note:
    Only public API return types belong in this module. Domain types
    (like EncryptionEnvelope) live in intuneappbuilder.models.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class PackResult:
    """Result from packing a source into .intunewin artifacts.

    Attributes:
        source: The file or directory that was packed.
        metadata_path: Path to the companion .intunewin.json file.
        package_path: Path to the raw encrypted container.
        portal_path: Path to the portal .intunewin zip.
        app_type: Graph app type ("win32LobApp" or "windowsMobileMSI").
        display_name: App display name.
        size: Plaintext size in bytes.
        size_encrypted: Encrypted container size in bytes.
        status: Always "success" for a completed pack.
    """

    source: Path
    metadata_path: Path
    package_path: Path
    portal_path: Path
    app_type: str
    display_name: str
    size: int
    size_encrypted: int
    status: str


@dataclass(frozen=True)
class PublishResult:
    """Result from publishing a package to Intune.

    Attributes:
        app_id: Graph id of the app the content was committed to.
        display_name: App display name.
        content_version_id: Id of the committed content version.
        file_id: Id of the committed content file.
        block_count: Number of blocks uploaded.
        created_app: True if the app was created by this publish.
        status: Always "success" for a completed publish.
    """

    app_id: str
    display_name: str
    content_version_id: str
    file_id: str
    block_count: int
    created_app: bool
    status: str
