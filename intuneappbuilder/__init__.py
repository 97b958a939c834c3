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

"""intuneappbuilder - Intune .intunewin packaging and publishing.

A Python tool for turning Windows installers into the encrypted .intunewin
format used by Microsoft Intune, and for uploading them through the Intune
content-file lifecycle.

intuneappbuilder provides:

- AES-256-CBC + HMAC-SHA256 container encoding with integrity checks
- Portal .intunewin packages (uncompressed zip with Detection.xml)
- MSI metadata extraction (PowerShell COM or msitools)
- Chunked block upload with URI renewal and retry
- Upload-state polling with failure detection and timeouts

Quick Start:
    Pack an installer:

        $ iab pack -s installers/Setup.msi -o out

    Publish it:

        $ iab publish -s out

Package Structure:

- cli: Command-line interface with argparse.
- core: High-level orchestration functions.
- build: Encryption, portal package assembly and package files.
- io: Graph, blob and chunked upload clients.
- lifecycle: Upload-state polling.
- config: YAML settings loading.

Public API:
    The primary interface is the CLI, but key functions are exported for
    programmatic use:

        from intuneappbuilder.core import pack_source, publish_package
        from intuneappbuilder.build import build_package, read_package
        from intuneappbuilder.config import load_settings
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "Build and publish Microsoft Intune .intunewin packages"

# Re-export commonly used functions for convenience
from intuneappbuilder.config import load_settings
from intuneappbuilder.core import pack_source, publish_package

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "load_settings",
    "pack_source",
    "publish_package",
]
