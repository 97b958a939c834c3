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

"""Microsoft Graph calls used to publish Intune app content.

This is not a general Graph client. It covers exactly the requests the
publish flow needs under deviceAppManagement/mobileApps:

- get, find (by display name), create and patch an app
- list and create content versions
- create, fetch, renew and commit content files

Every non-success response raises GraphRequestError with the method, URL and
status. Reads are retried on 429/5xx by the session adapter. Content-file
creation additionally retries HTTP 404, which Graph returns for a short
while after a content version is created.

Example:
    ```python
    from intuneappbuilder.auth import CredentialManager
    from intuneappbuilder.io.graph import GraphClient

    graph = GraphClient(CredentialManager().get_token)
    app = graph.get_app("0b8f6c3a-5d0e-4d47-9a55-0c4b3e1f3a11")
    ```
"""

from __future__ import annotations

from collections.abc import Callable
import time
from typing import Any

import requests

from intuneappbuilder.exceptions import GraphRequestError
from intuneappbuilder.io.http import make_session
from intuneappbuilder.models import ContentFile, ContentFileRef, EncryptionEnvelope

DEFAULT_BASE_URL = "https://graph.microsoft.com/beta"

CONTENT_FILE_TYPE = "#microsoft.graph.mobileAppContentFile"

# Graph types deriving from mobileLobApp
LOB_APP_TYPES = frozenset(
    {
        "#microsoft.graph.androidLobApp",
        "#microsoft.graph.iosLobApp",
        "#microsoft.graph.macOSLobApp",
        "#microsoft.graph.macOSDmgApp",
        "#microsoft.graph.macOSPkgApp",
        "#microsoft.graph.managedAndroidLobApp",
        "#microsoft.graph.managedIOSLobApp",
        "#microsoft.graph.win32LobApp",
        "#microsoft.graph.windowsAppX",
        "#microsoft.graph.windowsMobileMSI",
        "#microsoft.graph.windowsUniversalAppX",
    }
)


def _odata_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class GraphClient:
    """Thin Graph client for the mobileApps content endpoints.

    Args:
        token: Access token, or a callable returning one (called per request
            so a refreshing credential manager can be passed directly).
        base_url: Graph base URL including the version segment.
        session: Session to use. Defaults to make_session().
        timeout: Per-request timeout in seconds.
        sleep: Sleep function used between content-file creation retries.
        create_retries: Retries for content-file creation on HTTP 404.
        create_retry_delay: Seconds between those retries.
    """

    def __init__(
        self,
        token: str | Callable[[], str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 60,
        sleep: Callable[[float], None] = time.sleep,
        create_retries: int = 10,
        create_retry_delay: float = 30,
    ) -> None:
        self._token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or make_session()
        self.timeout = timeout
        self._sleep = sleep
        self.create_retries = create_retries
        self.create_retry_delay = create_retry_delay

    # -------------------------------
    # Request plumbing
    # -------------------------------

    def _auth_header(self) -> dict[str, str]:
        token = self._token() if callable(self._token) else self._token
        return {"Authorization": f"Bearer {token}"}

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        from intuneappbuilder.logging import get_global_logger

        url = f"{self.base_url}/{path.lstrip('/')}"
        get_global_logger().debug("GRAPH", f"{method} {url}")
        try:
            return self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._auth_header(),
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            raise GraphRequestError(method, url, None, str(err)) from err

    @staticmethod
    def _check(method: str, response: requests.Response) -> dict[str, Any]:
        if not response.ok:
            detail = response.text[:500]
            raise GraphRequestError(
                method,
                response.url,
                response.status_code,
                detail,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return self._check(method, self._send(method, path, json=json, params=params))

    # -------------------------------
    # Apps
    # -------------------------------

    def get_app(self, app_id: str) -> dict[str, Any] | None:
        """Fetch an app by id, or None if it does not exist."""
        response = self._send("GET", f"deviceAppManagement/mobileApps/{app_id}")
        if response.status_code == 404:
            return None
        return self._check("GET", response)

    def find_app_by_name(self, display_name: str) -> dict[str, Any] | None:
        """Return the first line-of-business app with the given display name."""
        data = self._request(
            "GET",
            "deviceAppManagement/mobileApps",
            params={"$filter": f"displayName eq {_odata_string(display_name)}"},
        )
        for app in data.get("value", []):
            if app.get("@odata.type") in LOB_APP_TYPES:
                return app
        return None

    def create_app(self, body: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "deviceAppManagement/mobileApps", json=body)

    def patch_app(self, app_id: str, body: dict[str, Any]) -> None:
        self._request("PATCH", f"deviceAppManagement/mobileApps/{app_id}", json=body)

    # -------------------------------
    # Content versions and files
    # -------------------------------

    @staticmethod
    def _versions_path(app_id: str, app_type: str) -> str:
        return f"deviceAppManagement/mobileApps/{app_id}/{app_type}/contentVersions"

    def list_content_versions(self, app_id: str, app_type: str) -> list[dict[str, Any]]:
        """List content versions, newest (highest id) first."""
        data = self._request(
            "GET", self._versions_path(app_id, app_type), params={"$orderby": "id desc"}
        )
        return list(data.get("value", []))

    def create_content_version(self, app_id: str, app_type: str) -> dict[str, Any]:
        return self._request("POST", self._versions_path(app_id, app_type), json={})

    def create_content_file(
        self,
        app_id: str,
        app_type: str,
        content_version_id: str,
        body: dict[str, Any],
    ) -> ContentFile:
        """Create a content file, retrying HTTP 404 while the version settles.

        Raises:
            GraphRequestError: On any other error, or once 404 retries are
                exhausted.
        """
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        path = f"{self._versions_path(app_id, app_type)}/{content_version_id}/files"
        payload = {"@odata.type": CONTENT_FILE_TYPE}
        payload.update(body)

        retries = 0
        while True:
            response = self._send("POST", path, json=payload)
            if response.status_code != 404 or retries >= self.create_retries:
                return ContentFile.from_dict(self._check("POST", response))
            retries += 1
            logger.verbose(
                "GRAPH",
                f"Content version not ready (HTTP 404), retry {retries} of "
                f"{self.create_retries} in {self.create_retry_delay:g}s",
            )
            self._sleep(self.create_retry_delay)

    def get_content_file(self, ref: ContentFileRef) -> ContentFile:
        return ContentFile.from_dict(
            self._request("GET", f"deviceAppManagement/mobileApps/{ref.path}")
        )

    def renew_upload(self, ref: ContentFileRef) -> None:
        self._request("POST", f"deviceAppManagement/mobileApps/{ref.path}/renewUpload")

    def commit_content_file(self, ref: ContentFileRef, envelope: EncryptionEnvelope) -> None:
        self._request(
            "POST",
            f"deviceAppManagement/mobileApps/{ref.path}/commit",
            json={"fileEncryptionInfo": envelope.to_dict()},
        )
