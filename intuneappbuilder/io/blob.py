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

"""Block operations against a pre-signed Azure blob URI.

Intune hands out a time-limited SAS URI for each content file. Content is
uploaded with Put Block (one call per block id) and made visible with a
single Put Block List call listing the ids in order.

Only these two operations are implemented. Redirects are not followed and
no automatic retries happen here: a 307, 400 or 403 is reported to the
caller as BlobRequestError so the uploader can apply its own retry and
renewal policy.

Example:
    ```python
    from intuneappbuilder.io.blob import BlobClient

    blob = BlobClient()
    blob.stage_block(sas_uri, "0000", first_chunk)
    blob.commit_block_list(sas_uri, ["0000"])
    ```
"""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import quote
from xml.sax.saxutils import escape

import requests

from intuneappbuilder.exceptions import BlobRequestError
from intuneappbuilder.io.http import make_session

BLOB_API_VERSION = "2020-04-08"


def _with_query(uri: str, query: str) -> str:
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}{query}"


def block_list_xml(block_ids: Sequence[str]) -> bytes:
    """Render the Put Block List request body."""
    latest = "".join(f"<Latest>{escape(block_id)}</Latest>" for block_id in block_ids)
    return (
        f'<?xml version="1.0" encoding="utf-8"?><BlockList>{latest}</BlockList>'
    ).encode("utf-8")


class BlobClient:
    """Put Block / Put Block List client for SAS URIs.

    Args:
        session: Session to use. Defaults to a session without automatic
            retries.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self, session: requests.Session | None = None, timeout: float = 300
    ) -> None:
        self.session = session or make_session(retry_reads=False)
        self.timeout = timeout

    def _put(self, operation: str, url: str, body: bytes, headers: dict[str, str]) -> None:
        request_headers = {"x-ms-version": BLOB_API_VERSION}
        request_headers.update(headers)
        try:
            response = self.session.put(
                url,
                data=body,
                headers=request_headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.RequestException as err:
            raise BlobRequestError(operation, None, str(err)) from err
        if response.status_code not in (200, 201):
            raise BlobRequestError(operation, response.status_code, response.text[:500])

    def stage_block(self, uri: str, block_id: str, data: bytes) -> None:
        """Upload one block under block_id.

        Block ids are sent as given; four-digit ids are valid base64 of
        equal decoded length, as Azure requires.

        Raises:
            BlobRequestError: On any non-201 response or transport error.
        """
        url = _with_query(uri, f"comp=block&blockid={quote(block_id, safe='')}")
        self._put("stage block", url, data, {"Content-Type": "application/octet-stream"})

    def commit_block_list(self, uri: str, block_ids: Sequence[str]) -> None:
        """Commit the staged blocks in the given order.

        Raises:
            BlobRequestError: On any non-201 response or transport error.
        """
        url = _with_query(uri, "comp=blocklist")
        self._put(
            "commit block list",
            url,
            block_list_xml(block_ids),
            {"Content-Type": "application/xml"},
        )
