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

"""Core orchestration for intuneappbuilder.

This module provides the two high-level operations behind the CLI:

- pack_source: encrypt a file or directory and write the .intunewin
  artifacts (companion JSON, raw container, portal zip)
- publish_package: push a package through the Intune content-file
  lifecycle and commit it to its app

Publish Flow:

1. Find the app (by id, else by display name) or create it with defaults
2. Reuse the newest content version if nothing was ever committed,
   otherwise create a new content version
3. Create the content file and wait for azureStorageUriRequestSuccess
4. Upload the container in blocks and commit the block list
5. Commit the file with its encryption info, wait for commitFileSuccess,
   then point the app's committedContentVersion at the new version

Design Principles:

- Each function has a single, clear responsibility
- Functions return structured data (dataclasses) for easy testing
- Error handling uses exceptions; CLI layer formats for user display
- Collaborators (Graph client, blob client, clock, sleep) are passed in

Example:
    Programmatic usage:
        ```python
        from pathlib import Path
        from intuneappbuilder.auth import CredentialManager
        from intuneappbuilder.build.packager import read_package
        from intuneappbuilder.core import publish_package
        from intuneappbuilder.io.graph import GraphClient

        graph = GraphClient(CredentialManager().get_token)
        with read_package(Path("out/Setup.intunewin.json")) as package:
            result = publish_package(package, graph)

        print(f"Committed content version {result.content_version_id}")
        ```
"""

from __future__ import annotations

from collections.abc import Callable
import os
from pathlib import Path
import time

from intuneappbuilder.apps import AppResolver, get_or_create_app
from intuneappbuilder.build.encryptor import check_encrypted_size
from intuneappbuilder.build.packager import build_package, write_package_files
from intuneappbuilder.config import Settings, load_settings
from intuneappbuilder.exceptions import IntegrityError
from intuneappbuilder.io.blob import BlobClient
from intuneappbuilder.io.graph import GraphClient
from intuneappbuilder.io.upload import ChunkedUploader, make_status_predicate
from intuneappbuilder.lifecycle import LifecycleWaiter
from intuneappbuilder.models import ContentFile, ContentFileRef, Package, UploadState
from intuneappbuilder.msi import InstallerMetadataReader
from intuneappbuilder.results import PackResult, PublishResult


def pack_source(
    source: Path,
    output_dir: Path,
    *,
    setup_file: str | None = None,
    reader: InstallerMetadataReader | None = None,
) -> PackResult:
    """Package a file or directory into .intunewin artifacts.

    Args:
        source: Setup file, or directory with the app content.
        output_dir: Directory receiving the artifacts.
        setup_file: Setup file inside a directory source.
        reader: Installer metadata reader (defaults to the host's best).

    Returns:
        PackResult with the artifact paths and package summary.

    Raises:
        SourceNotFoundError: If the source does not exist.
        ConfigError: If an explicit setup file is invalid.
        PackagingError: If encryption or writing the artifacts fails.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()

    logger.step(1, 2, f"Encrypting {Path(source).name}...")
    with build_package(Path(source), setup_file=setup_file, reader=reader) as package:
        logger.step(2, 2, "Writing package files...")
        files = write_package_files(package, Path(output_dir))

        return PackResult(
            source=Path(source).resolve(),
            metadata_path=files.metadata_path,
            package_path=files.package_path,
            portal_path=files.portal_path,
            app_type=package.app.app_type.rsplit(".", 1)[-1],
            display_name=package.app.display_name,
            size=package.file.size,
            size_encrypted=package.file.size_encrypted,
            status="success",
        )


def _check_package_data(package: Package) -> None:
    """Fail before any remote call if the stream does not match the metadata."""
    actual = package.data.seek(0, os.SEEK_END)
    package.data.seek(0)
    if actual != package.file.size_encrypted:
        raise IntegrityError(
            f"Package data is {actual} bytes but sizeEncrypted is "
            f"{package.file.size_encrypted}"
        )
    check_encrypted_size(package.file.size, actual)


def _select_content_version(graph: GraphClient, app: dict, app_type: str) -> str:
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    app_id = app["id"]
    # Uncommitted apps reject new content versions; reuse the last one
    if not app.get("committedContentVersion"):
        versions = graph.list_content_versions(app_id, app_type)
        if versions:
            logger.verbose("GRAPH", f"Reusing content version {versions[0]['id']}")
            return str(versions[0]["id"])
    version = graph.create_content_version(app_id, app_type)
    logger.verbose("GRAPH", f"Created content version {version['id']}")
    return str(version["id"])


def publish_package(
    package: Package,
    graph: GraphClient,
    *,
    settings: Settings | None = None,
    blob: BlobClient | None = None,
    resolver: AppResolver | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PublishResult:
    """Upload and commit a package to its Intune app.

    Args:
        package: Package to publish. Its data stream is read from the start.
        graph: Graph client.
        settings: Effective settings (defaults to built-in defaults).
        blob: Blob client for block uploads.
        resolver: App resolver (defaults to lookup through graph).
        clock: Monotonic clock for renewal and wait timing.
        sleep: Sleep function for retries and polling.

    Returns:
        PublishResult describing the committed content.

    Raises:
        IntegrityError: If the package data does not match its metadata.
        PublishError: On an app type mismatch, a failed upload state, or a
            wait timeout (UploadStateError, UploadTimeoutError).
        NetworkError: On Graph or blob request failures, including blocks
            that exhaust their retries (BlockUploadError).
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    settings = settings or load_settings()
    blob = blob or BlobClient()

    _check_package_data(package)

    logger.step(1, 5, f"Resolving app {package.app.display_name}...")
    remote_app, created = get_or_create_app(package.app, graph, resolver)
    app_id = str(remote_app["id"])
    app_type = str(remote_app["@odata.type"]).lstrip("#")

    logger.step(2, 5, "Preparing content version...")
    content_version_id = _select_content_version(graph, remote_app, app_type)

    body = package.file.to_dict()
    body["isDependency"] = False
    # Manifests are only accepted for windowsMobileMSI apps
    if not package.app.is_msi_app:
        body["manifest"] = None

    logger.step(3, 5, "Requesting upload location...")
    created_file = graph.create_content_file(app_id, app_type, content_version_id, body)
    ref = ContentFileRef(
        app_id=app_id,
        app_type=app_type,
        content_version_id=content_version_id,
        file_id=created_file.id,
    )
    waiter = LifecycleWaiter(
        graph.get_content_file,
        poll_interval=settings.lifecycle.poll_interval,
        timeout=settings.lifecycle.timeout,
        clock=clock,
        sleep=sleep,
    )
    content_file = waiter.wait_for(ref, UploadState.AZURE_STORAGE_URI_REQUEST_SUCCESS)

    def renew() -> ContentFile:
        logger.verbose("UPLOAD", f"Renewing upload URI for file {ref.file_id}")
        graph.renew_upload(ref)
        return waiter.wait_for(ref, UploadState.AZURE_STORAGE_URI_RENEWAL_SUCCESS)

    logger.step(4, 5, "Uploading content...")
    uploader = ChunkedUploader(
        blob,
        renew,
        chunk_size=settings.upload.chunk_size,
        renewal_interval=settings.upload.renewal_interval,
        retry_delay=settings.upload.retry_delay,
        max_attempts=settings.upload.max_attempts,
        is_retryable=make_status_predicate(settings.upload.retryable_statuses),
        clock=clock,
        sleep=sleep,
    )
    block_ids = uploader.upload(package.data, content_file)

    logger.step(5, 5, "Committing content...")
    graph.commit_content_file(ref, package.envelope)
    waiter.wait_for(ref, UploadState.COMMIT_FILE_SUCCESS)

    graph.patch_app(
        app_id,
        {
            "@odata.type": remote_app["@odata.type"],
            "committedContentVersion": content_version_id,
        },
    )
    logger.verbose(
        "GRAPH", f"App {app_id} now uses content version {content_version_id}"
    )

    return PublishResult(
        app_id=app_id,
        display_name=str(remote_app.get("displayName") or package.app.display_name),
        content_version_id=content_version_id,
        file_id=ref.file_id,
        block_count=len(block_ids),
        created_app=created,
        status="success",
    )
