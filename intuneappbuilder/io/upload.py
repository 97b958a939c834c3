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

"""Chunked upload of encrypted content to Intune blob storage.

The encrypted container is split into fixed-size blocks (25 MiB by default)
staged under ids "0000", "0001", ... in order, then committed with one block
list call.

The SAS URI handed out by Intune expires, so the uploader renews it through
an injected callable:

- proactively, once the renewal interval (450s by default) has elapsed
  since the URI was obtained or last renewed
- reactively, when a block still fails with HTTP 403 after its retry budget
  is spent; the block then gets one more retry round on the renewed URI

Each block is retried on statuses accepted by the retry predicate (307, 400
and 403 by default) with a fixed delay, rewinding to the block start before
every attempt.

Example:
    ```python
    from intuneappbuilder.io.blob import BlobClient
    from intuneappbuilder.io.upload import ChunkedUploader

    uploader = ChunkedUploader(BlobClient(), renew=renew_uri)
    block_ids = uploader.upload(package.data, content_file)
    ```
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
import os
import time
from typing import BinaryIO

from intuneappbuilder.exceptions import (
    BlobRequestError,
    BlockUploadError,
    PublishError,
)
from intuneappbuilder.io.blob import BlobClient
from intuneappbuilder.models import ContentFile

DEFAULT_CHUNK_SIZE = 25 * 1024 * 1024
DEFAULT_RENEWAL_INTERVAL = 450.0
DEFAULT_RETRY_DELAY = 10.0
DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_RETRYABLE_STATUSES = (307, 400, 403)

StatusPredicate = Callable[["int | None"], bool]


def block_id(index: int) -> str:
    """Zero-padded four-digit block id for a block index."""
    return f"{index:04d}"


def block_count(size: int, chunk_size: int) -> int:
    return -(-size // chunk_size)


def iter_blocks(size: int, chunk_size: int) -> Iterator[tuple[str, int, int]]:
    """Yield (block id, offset, length) for a stream of the given size."""
    for index in range(block_count(size, chunk_size)):
        offset = index * chunk_size
        yield block_id(index), offset, min(chunk_size, size - offset)


def make_status_predicate(statuses: Iterable[int]) -> StatusPredicate:
    """Build a retry predicate accepting exactly the given HTTP statuses."""
    allowed = frozenset(statuses)

    def is_retryable(status: int | None) -> bool:
        return status is not None and status in allowed

    return is_retryable


is_retryable_status = make_status_predicate(DEFAULT_RETRYABLE_STATUSES)


class ChunkedUploader:
    """Uploads a seekable stream as blocks to a renewable SAS URI.

    Args:
        blob: Blob client performing the block calls.
        renew: Callable renewing the upload URI and returning the refreshed
            content file (with its new azureStorageUri).
        chunk_size: Block size in bytes.
        renewal_interval: Seconds after which the URI is renewed before the
            next block.
        retry_delay: Seconds to wait before retrying a block.
        max_attempts: Total attempts per block and retry round.
        is_retryable: Predicate deciding which HTTP statuses are retried.
        clock: Monotonic clock returning seconds.
        sleep: Sleep function taking seconds.
    """

    def __init__(
        self,
        blob: BlobClient,
        renew: Callable[[], ContentFile],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        renewal_interval: float = DEFAULT_RENEWAL_INTERVAL,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        is_retryable: StatusPredicate = is_retryable_status,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.blob = blob
        self._renew = renew
        self.chunk_size = chunk_size
        self.renewal_interval = renewal_interval
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.is_retryable = is_retryable
        self._clock = clock
        self._sleep = sleep

    def _renew_uri(self) -> str:
        content_file = self._renew()
        if not content_file.azure_storage_uri:
            raise PublishError("Renewed content file has no azureStorageUri")
        return content_file.azure_storage_uri

    def _stage_with_retry(
        self, uri: str, stream: BinaryIO, block: str, offset: int, length: int
    ) -> int:
        """Stage one block, retrying retryable statuses.

        Returns:
            The number of attempts made.

        Raises:
            BlockUploadError: On a non-retryable status or once max_attempts
                attempts have failed.
        """
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        attempts = 0
        while True:
            attempts += 1
            stream.seek(offset)
            data = stream.read(length)
            try:
                self.blob.stage_block(uri, block, data)
                return attempts
            except BlobRequestError as err:
                if not self.is_retryable(err.status_code) or attempts >= self.max_attempts:
                    raise BlockUploadError(block, err.status_code, attempts) from err
                logger.warning(
                    "UPLOAD",
                    f"Retryable error ({err.status_code}) uploading block {block} - "
                    f"will retry in {self.retry_delay:g} seconds",
                )
                self._sleep(self.retry_delay)

    def upload(self, stream: BinaryIO, content_file: ContentFile) -> list[str]:
        """Upload the whole stream and commit the block list.

        Args:
            stream: Seekable stream holding the encrypted container. It is
                rewound to position 0 afterwards.
            content_file: Content file in azureStorageUriRequestSuccess state.

        Returns:
            The committed block ids, in order.

        Raises:
            PublishError: If the content file has no upload URI.
            BlockUploadError: If a block cannot be staged.
            BlobRequestError: If the block list commit fails.
        """
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        uri = content_file.azure_storage_uri
        if not uri:
            raise PublishError(f"Content file {content_file.id} has no azureStorageUri")

        size = stream.seek(0, os.SEEK_END)
        total = block_count(size, self.chunk_size)
        last_renewal = self._clock()
        block_ids: list[str] = []

        for block, offset, length in iter_blocks(size, self.chunk_size):
            if self._clock() - last_renewal >= self.renewal_interval:
                logger.verbose("UPLOAD", "Upload URI is nearing expiry, renewing")
                uri = self._renew_uri()
                last_renewal = self._clock()

            logger.verbose(
                "UPLOAD", f"Uploading block {block} of {block_id(total - 1)} ({length} bytes)"
            )
            try:
                self._stage_with_retry(uri, stream, block, offset, length)
            except BlockUploadError as err:
                if err.status_code != 403:
                    raise
                logger.warning(
                    "UPLOAD", f"Block {block} was rejected with 403, renewing upload URI"
                )
                uri = self._renew_uri()
                last_renewal = self._clock()
                self._stage_with_retry(uri, stream, block, offset, length)
            block_ids.append(block)

        stream.seek(0)
        logger.verbose("UPLOAD", f"Committing block list ({len(block_ids)} blocks)")
        self.blob.commit_block_list(uri, block_ids)
        return block_ids
