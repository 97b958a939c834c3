"""
Tests for intuneappbuilder.io.graph module.

Tests the Graph mobileApps calls including:
- Bearer token handling (static and callable)
- App lookup, creation and patching
- Content versions and content files
- HTTP 404 retry on content-file creation
- Error mapping to GraphRequestError
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import requests
import requests_mock

from conftest import GRAPH
from intuneappbuilder.exceptions import GraphRequestError
from intuneappbuilder.io.graph import GraphClient
from intuneappbuilder.models import (
    ContentFileRef,
    EncryptionEnvelope,
    UploadState,
)

pytestmark = pytest.mark.unit

APPS = f"{GRAPH}/deviceAppManagement/mobileApps"
APP_TYPE = "microsoft.graph.win32LobApp"
VERSIONS = f"{APPS}/app-1/{APP_TYPE}/contentVersions"
REF = ContentFileRef("app-1", APP_TYPE, "3", "file-9")
FILE_URL = f"{VERSIONS}/3/files/file-9"


def _client(sleeps: list[float] | None = None, **kwargs) -> GraphClient:
    recorder = sleeps if sleeps is not None else []
    return GraphClient("tok", sleep=recorder.append, **kwargs)


class TestAuth:
    """Tests for the Authorization header."""

    def test_static_token(self):
        """Test that a string token is sent as a bearer token."""
        with requests_mock.Mocker() as m:
            m.get(f"{APPS}/app-1", json={"id": "app-1"})
            _client().get_app("app-1")

            assert m.last_request.headers["Authorization"] == "Bearer tok"

    def test_callable_token_called_per_request(self):
        """Test that a token callable is invoked for every request."""
        tokens = iter(["first", "second"])
        graph = GraphClient(lambda: next(tokens))

        with requests_mock.Mocker() as m:
            m.get(f"{APPS}/app-1", json={"id": "app-1"})
            graph.get_app("app-1")
            graph.get_app("app-1")

            headers = [r.headers["Authorization"] for r in m.request_history]

        assert headers == ["Bearer first", "Bearer second"]


class TestApps:
    """Tests for app lookup and mutation."""

    def test_get_app_not_found(self):
        """Test that a missing app returns None."""
        with requests_mock.Mocker() as m:
            m.get(f"{APPS}/gone", status_code=404)
            assert _client().get_app("gone") is None

    def test_find_app_by_name_filters_lob_types(self):
        """Test that only line-of-business apps match by name."""
        with requests_mock.Mocker() as m:
            m.get(
                APPS,
                json={
                    "value": [
                        {"id": "web", "@odata.type": "#microsoft.graph.webApp"},
                        {"id": "lob", "@odata.type": "#microsoft.graph.win32LobApp"},
                    ]
                },
            )
            app = _client().find_app_by_name("O'Brien Tool")

            query = parse_qs(urlparse(m.last_request.url).query)

        assert app["id"] == "lob"
        assert query["$filter"] == ["displayName eq 'O''Brien Tool'"]

    def test_find_app_by_name_none(self):
        """Test that no match returns None."""
        with requests_mock.Mocker() as m:
            m.get(APPS, json={"value": []})
            assert _client().find_app_by_name("Nothing") is None

    def test_create_app(self):
        """Test that create_app POSTs the body and returns the created app."""
        with requests_mock.Mocker() as m:
            m.post(APPS, status_code=201, json={"id": "new"})
            created = _client().create_app({"displayName": "X"})

            assert m.last_request.json() == {"displayName": "X"}

        assert created == {"id": "new"}

    def test_patch_app_no_content(self):
        """Test that a 204 response is accepted."""
        with requests_mock.Mocker() as m:
            m.patch(f"{APPS}/app-1", status_code=204)
            _client().patch_app("app-1", {"committedContentVersion": "3"})

            assert m.last_request.json() == {"committedContentVersion": "3"}

    def test_error_raises(self):
        """Test that an error response raises GraphRequestError."""
        with requests_mock.Mocker() as m:
            m.post(APPS, status_code=400, text="BadRequest")
            with pytest.raises(GraphRequestError) as exc_info:
                _client().create_app({})

        err = exc_info.value
        assert err.status_code == 400
        assert err.method == "POST"
        assert "BadRequest" in str(err)

    def test_connection_error_raises(self):
        """Test that transport errors raise GraphRequestError without a status."""
        with requests_mock.Mocker() as m:
            m.get(f"{APPS}/app-1", exc=requests.ConnectionError("down"))
            with pytest.raises(GraphRequestError) as exc_info:
                _client().get_app("app-1")

        assert exc_info.value.status_code is None


class TestContent:
    """Tests for content versions and content files."""

    def test_list_content_versions(self):
        """Test that versions are requested newest first."""
        with requests_mock.Mocker() as m:
            m.get(VERSIONS, json={"value": [{"id": "2"}, {"id": "1"}]})
            versions = _client().list_content_versions("app-1", APP_TYPE)

            assert m.last_request.qs["$orderby"] == ["id desc"]

        assert [v["id"] for v in versions] == ["2", "1"]

    def test_create_content_version(self):
        """Test that a content version is created with an empty body."""
        with requests_mock.Mocker() as m:
            m.post(VERSIONS, status_code=201, json={"id": "3"})
            version = _client().create_content_version("app-1", APP_TYPE)

            assert m.last_request.json() == {}

        assert version["id"] == "3"

    def test_create_content_file(self):
        """Test that the content file body carries its odata type."""
        with requests_mock.Mocker() as m:
            m.post(
                f"{VERSIONS}/3/files",
                status_code=201,
                json={"id": "file-9", "uploadState": "azureStorageUriRequestPending"},
            )
            created = _client().create_content_file(
                "app-1", APP_TYPE, "3", {"name": "a.intunewin", "size": 1}
            )

            body = m.last_request.json()

        assert body["@odata.type"] == "#microsoft.graph.mobileAppContentFile"
        assert body["name"] == "a.intunewin"
        assert created.id == "file-9"
        assert created.upload_state is UploadState.AZURE_STORAGE_URI_REQUEST_PENDING

    def test_create_content_file_retries_404(self):
        """Test that HTTP 404 is retried with the configured delay."""
        sleeps: list[float] = []
        with requests_mock.Mocker() as m:
            m.post(
                f"{VERSIONS}/3/files",
                [
                    {"status_code": 404},
                    {"status_code": 404},
                    {"status_code": 201, "json": {"id": "file-9"}},
                ],
            )
            created = _client(sleeps, create_retry_delay=5).create_content_file(
                "app-1", APP_TYPE, "3", {}
            )

            assert m.call_count == 3

        assert created.id == "file-9"
        assert sleeps == [5, 5]

    def test_create_content_file_404_exhausted(self):
        """Test that 404 retries are bounded."""
        sleeps: list[float] = []
        with requests_mock.Mocker() as m:
            m.post(f"{VERSIONS}/3/files", status_code=404)
            with pytest.raises(GraphRequestError) as exc_info:
                _client(sleeps, create_retries=2).create_content_file(
                    "app-1", APP_TYPE, "3", {}
                )

            assert m.call_count == 3

        assert exc_info.value.status_code == 404
        assert len(sleeps) == 2

    def test_create_content_file_other_error_not_retried(self):
        """Test that errors other than 404 fail immediately."""
        with requests_mock.Mocker() as m:
            m.post(f"{VERSIONS}/3/files", status_code=500)
            with pytest.raises(GraphRequestError):
                _client().create_content_file("app-1", APP_TYPE, "3", {})

            assert m.call_count == 1

    def test_get_content_file(self):
        """Test that a content file snapshot is fetched by reference."""
        with requests_mock.Mocker() as m:
            m.get(
                FILE_URL,
                json={
                    "id": "file-9",
                    "uploadState": "azureStorageUriRequestSuccess",
                    "azureStorageUri": "https://blob/sas",
                },
            )
            content_file = _client().get_content_file(REF)

        assert content_file.azure_storage_uri == "https://blob/sas"

    def test_renew_upload(self):
        """Test that renewUpload is POSTed on the content file."""
        with requests_mock.Mocker() as m:
            m.post(f"{FILE_URL}/renewUpload", status_code=204)
            _client().renew_upload(REF)

            assert m.called

    def test_commit_content_file(self):
        """Test that commit sends the envelope as fileEncryptionInfo."""
        envelope = EncryptionEnvelope(
            encryption_key=b"k" * 32,
            mac_key=b"m" * 32,
            initialization_vector=b"i" * 16,
            mac=b"a" * 32,
            file_digest=b"d" * 32,
        )
        with requests_mock.Mocker() as m:
            m.post(f"{FILE_URL}/commit", status_code=204)
            _client().commit_content_file(REF, envelope)

            assert m.last_request.json() == {"fileEncryptionInfo": envelope.to_dict()}
