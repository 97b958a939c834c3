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

"""Local .intunewin package building for intuneappbuilder.

This package encrypts sources into containers, assembles portal packages,
and reads and writes the persisted package artifacts.

Example:
    ```python
    from pathlib import Path
    from intuneappbuilder.build import build_package, write_package_files

    with build_package(Path("installers/MyApp")) as package:
        files = write_package_files(package, Path("out"))

    print(f"Portal package: {files.portal_path}")
    ```
"""

from .encryptor import decrypt_container, encrypt_file, expected_encrypted_size
from .packager import build_package, read_package, write_package_files
from .portal import build_detection_xml, build_portal_package

__all__ = [
    "build_detection_xml",
    "build_package",
    "build_portal_package",
    "decrypt_container",
    "encrypt_file",
    "expected_encrypted_size",
    "read_package",
    "write_package_files",
]
