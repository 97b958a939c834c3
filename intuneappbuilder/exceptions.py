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

"""Exception hierarchy for intuneappbuilder.

This module defines a custom exception hierarchy that allows library users
to distinguish between different types of errors:

- ConfigError: Configuration-related errors (YAML parse, invalid settings,
    missing credentials, ambiguous setup files)
- PackagingError: Local encode errors (missing source, integrity mismatch)
- NetworkError: HTTP-level failures talking to Graph or blob storage
- PublishError: Remote lifecycle failures (failed upload state, timeouts)

All exceptions inherit from IABError, allowing users to catch all
intuneappbuilder errors with a single except clause if needed.

Example:
    Catching specific error types:
        ```python
        from intuneappbuilder.core import publish_package
        from intuneappbuilder.exceptions import UploadStateError, UploadTimeoutError

        try:
            publish_package(package, graph)
        except UploadStateError as e:
            print(f"Intune rejected the upload: {e.state}")
        except UploadTimeoutError as e:
            print(f"Gave up waiting, last state was {e.last_state}")
        ```

    Catching all errors:
        ```python
        from intuneappbuilder.exceptions import IABError

        try:
            result = pack_source(Path("setup.msi"), Path("out"))
        except IABError as e:
            print(f"Error: {e}")
        ```
"""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "IABError",
    "ConfigError",
    "PackagingError",
    "SourceNotFoundError",
    "IntegrityError",
    "NetworkError",
    "GraphRequestError",
    "BlobRequestError",
    "BlockUploadError",
    "PublishError",
    "UploadStateError",
    "UploadTimeoutError",
]


class IABError(Exception):
    """Base exception for all intuneappbuilder errors.

    All intuneappbuilder-specific exceptions inherit from this class,
    allowing users to catch all errors with a single except clause if needed.
    """

    pass


class ConfigError(IABError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parse errors in a settings file
    - Invalid setting values (non-positive chunk size, unknown keys types)
    - Missing credentials for publishing
    - Ambiguous packaging input (a directory with several setup candidates)
    - Unsupported package sources
    """

    pass


class PackagingError(IABError):
    """Raised for local packaging errors.

    Covers failures while encrypting a source, reading installer metadata,
    assembling the portal package, or reading persisted package files.
    """

    pass


class SourceNotFoundError(PackagingError):
    """Raised when a packaging source is missing or unreadable.

    Attributes:
        path: The path that could not be read.
    """

    def __init__(self, path: Path | str, message: str | None = None) -> None:
        self.path = Path(path)
        super().__init__(message or f"Could not find source file {self.path}")


class IntegrityError(PackagingError):
    """Raised when an encrypted container fails a size or MAC check.

    A mismatch means the encode is corrupted; it is always raised before
    any remote call is made with the container.
    """

    pass


class NetworkError(IABError):
    """Raised for network-related errors.

    This exception is raised when there are problems with:

    - Graph API calls (HTTP errors, connection failures)
    - Blob storage calls against the pre-signed upload URI
    - Token acquisition
    """

    pass


class GraphRequestError(NetworkError):
    """Raised when a Microsoft Graph request returns a non-success status.

    Attributes:
        method: HTTP method of the failed request.
        url: Request URL.
        status_code: HTTP status code (None when no response was received).
    """

    def __init__(
        self, method: str, url: str, status_code: int | None, detail: str = ""
    ) -> None:
        self.method = method
        self.url = url
        self.status_code = status_code
        message = f"{method} {url} failed"
        if status_code is not None:
            message += f" with HTTP {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class BlobRequestError(NetworkError):
    """Raised when a blob storage request returns a non-success status.

    Attributes:
        operation: Blob operation name ("stage block", "commit block list").
        status_code: HTTP status code (None when no response was received).
    """

    def __init__(
        self, operation: str, status_code: int | None, detail: str = ""
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        message = f"Blob {operation} failed"
        if status_code is not None:
            message += f" with HTTP {status_code}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class BlockUploadError(NetworkError):
    """Raised when a block could not be staged within the retry budget.

    Attributes:
        block_id: Four-digit id of the block that failed.
        status_code: Last HTTP status observed for the block.
        attempts: Number of stage attempts made.
    """

    def __init__(self, block_id: str, status_code: int | None, attempts: int) -> None:
        self.block_id = block_id
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(
            f"Failed to upload block {block_id} after {attempts} attempt(s) "
            f"(last status: {status_code})"
        )


class PublishError(IABError):
    """Raised for failures in the remote content-file lifecycle."""

    pass


class UploadStateError(PublishError):
    """Raised when a content file reaches a terminal failure state.

    Attributes:
        state: The failure state reported by Intune.
        desired: The state that was being waited for.
    """

    def __init__(self, state: str, desired: str) -> None:
        self.state = state
        self.desired = desired
        super().__init__(
            f"uploadState is in a failed state of {state} - was waiting for {desired}"
        )


class UploadTimeoutError(PublishError):
    """Raised when a content file does not reach the desired state in time.

    Attributes:
        last_state: Last state observed before giving up.
        desired: The state that was being waited for.
        elapsed: Seconds spent waiting.
    """

    def __init__(self, last_state: str, desired: str, elapsed: float) -> None:
        self.last_state = last_state
        self.desired = desired
        self.elapsed = elapsed
        super().__init__(
            f"Timed out after {elapsed:.0f}s waiting for uploadState of {desired} "
            f"- current state is {last_state}"
        )
