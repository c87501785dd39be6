"""Unit tests for the Graph API client."""

from unittest.mock import patch

import httpx
import pytest

from onedrive_backup.api import OneDriveClient
from onedrive_backup.exceptions import (
    OneDriveAPIError,
    OneDriveAuthenticationError,
    OneDriveDeltaExpiredError,
    OneDriveDownloadError,
    OneDriveInvalidResponseError,
    OneDriveNetworkError,
    OneDriveNotFoundError,
    OneDrivePermissionError,
    OneDriveRateLimitError,
)


def make_client(handler, **kwargs) -> OneDriveClient:
    """Create a client whose requests are answered by handler."""
    return OneDriveClient(
        access_token="test_token", transport=httpx.MockTransport(handler), **kwargs
    )


class TestOneDriveClient:
    """Tests for OneDriveClient initialization and URL building."""

    def test_init_defaults(self):
        """Test client initialization with defaults."""
        client = OneDriveClient(access_token="test_token")
        assert client.access_token == "test_token"
        assert client.api_url == "https://graph.microsoft.com/v1.0"
        assert client.max_retries == 3

    def test_authorization_header(self):
        """Test that the bearer token is sent with every request."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"value": []})

        with make_client(handler) as client:
            client.get_children_page(client.children_url())
        assert seen["auth"] == "Bearer test_token"

    def test_absolute_urls_used_as_is(self):
        """Test that nextLink values are not prefixed with the base URL."""
        client = OneDriveClient(access_token="t")
        link = "https://graph.microsoft.com/v1.0/me/drive/root/delta?token=abc"
        assert client._url(link) == link
        assert (
            client._url("me/drive/root/delta")
            == "https://graph.microsoft.com/v1.0/me/drive/root/delta"
        )

    def test_children_url_for_drive_root(self):
        """Test children URL of the drive root."""
        client = OneDriveClient(access_token="t")
        assert client.children_url() == "me/drive/root/children?$top=999"
        assert client.children_url(path="/") == "me/drive/root/children?$top=999"

    def test_children_url_for_path(self):
        """Test children URL of a folder addressed by path."""
        client = OneDriveClient(access_token="t")
        assert (
            client.children_url(path="Documents/My Files")
            == "me/drive/root:/Documents/My%20Files:/children?$top=999"
        )

    def test_children_url_for_item_id(self):
        """Test that an item id takes precedence over a path."""
        client = OneDriveClient(access_token="t")
        assert (
            client.children_url(item_id="ABC!1", path="/ignored")
            == "me/drive/items/ABC!1/children?$top=999"
        )

    def test_delta_url(self):
        """Test delta origin URLs for the root and for a folder."""
        client = OneDriveClient(access_token="t")
        assert client.delta_url() == "me/drive/root/delta"
        assert client.delta_url("/Documents") == "me/drive/root:/Documents:/delta"

    def test_content_url(self):
        """Test content URL quoting."""
        client = OneDriveClient(access_token="t")
        url = client.content_url("/sub/b c.txt")
        assert url == "me/drive/root:/sub/b%20c.txt:/content"


class TestAPIRequest:
    """Tests for the _request method."""

    def test_successful_json_response(self):
        """Test successful API request with JSON response."""
        client = make_client(lambda request: httpx.Response(200, json={"data": "x"}))
        assert client._request("GET", "me/drive") == {"data": "x"}

    def test_empty_response(self):
        """Test handling of empty response."""
        client = make_client(lambda request: httpx.Response(204))
        assert client._request("GET", "me/drive") == {}

    def test_invalid_json_raises_error(self):
        """Test that a non-JSON body raises an invalid response error."""
        client = make_client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(OneDriveInvalidResponseError):
            client._request("GET", "me/drive")

    @pytest.mark.parametrize(
        "status,error",
        [
            (401, OneDriveAuthenticationError),
            (403, OneDrivePermissionError),
            (404, OneDriveNotFoundError),
            (410, OneDriveDeltaExpiredError),
        ],
    )
    def test_status_mapping(self, status, error):
        """Test that client errors map to specific exceptions without retry."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(status)

        client = make_client(handler)
        with pytest.raises(error):
            client._request("GET", "me/drive/root/delta")
        assert len(calls) == 1

    def test_error_message_from_body(self):
        """Test that the Graph error message is included."""
        body = {"error": {"code": "invalidRequest", "message": "Bad path"}}
        client = make_client(lambda request: httpx.Response(400, json=body))
        with pytest.raises(OneDriveAPIError, match="Bad path"):
            client._request("GET", "me/drive")

    @patch("onedrive_backup.api.time.sleep")
    def test_server_error_is_retried(self, mock_sleep):
        """Test that 5xx responses are retried until success."""
        responses = [httpx.Response(503), httpx.Response(200, json={"ok": True})]

        client = make_client(lambda request: responses.pop(0))
        assert client._request("GET", "me/drive") == {"ok": True}
        assert mock_sleep.call_count == 1

    @patch("onedrive_backup.api.time.sleep")
    def test_rate_limit_honours_retry_after(self, mock_sleep):
        """Test that 429 waits for the Retry-After period."""
        responses = [
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(200, json={"ok": True}),
        ]

        client = make_client(lambda request: responses.pop(0))
        assert client._request("GET", "me/drive") == {"ok": True}
        mock_sleep.assert_called_once_with(7.0)

    @patch("onedrive_backup.api.time.sleep")
    def test_rate_limit_exhausts_retries(self, mock_sleep):
        """Test that persistent 429 raises after max_retries."""
        client = make_client(lambda request: httpx.Response(429), max_retries=2)
        with pytest.raises(OneDriveRateLimitError):
            client._request("GET", "me/drive")
        assert mock_sleep.call_count == 2

    @patch("onedrive_backup.api.time.sleep")
    def test_network_error_is_retried_then_raised(self, mock_sleep):
        """Test that connection failures become OneDriveNetworkError."""
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_retries=2)
        with pytest.raises(OneDriveNetworkError):
            client._request("GET", "me/drive")
        assert len(calls) == 3

    def test_retry_delay_uses_exponential_backoff(self):
        """Test backoff grows exponentially within the jitter range."""
        client = OneDriveClient(access_token="t", retry_delay=1.0)
        for attempt in range(4):
            delay = client._calculate_retry_delay(attempt)
            base = 2**attempt
            assert base * 0.75 <= delay <= base * 1.25


class TestDownloadFile:
    """Tests for streaming file content to disk."""

    def test_download_writes_file(self, tmp_path):
        """Test downloading writes the body and returns its size."""
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, content=b"hello world")

        output = tmp_path / "sub" / "b.txt"
        with make_client(handler) as client:
            size = client.download_file("/sub/b.txt", output)

        assert size == 11
        assert output.read_bytes() == b"hello world"
        assert not (tmp_path / "sub" / "b.txt.part").exists()
        assert requested[0].endswith("me/drive/root:/sub/b.txt:/content")

    def test_download_follows_redirect(self, tmp_path):
        """Test that the pre-authenticated redirect is followed."""

        def handler(request):
            if request.url.host == "graph.microsoft.com":
                return httpx.Response(
                    302, headers={"Location": "https://cdn.example.com/blob"}
                )
            return httpx.Response(200, content=b"data")

        output = tmp_path / "a.txt"
        with make_client(handler) as client:
            client.download_file("/a.txt", output)
        assert output.read_bytes() == b"data"

    def test_download_failure_keeps_existing_file(self, tmp_path):
        """Test that a rejected download leaves the local copy untouched."""
        output = tmp_path / "a.txt"
        output.write_text("old content")

        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(OneDriveDownloadError, match="404"):
            client.download_file("/a.txt", output)
        assert output.read_text() == "old content"

    def test_download_network_error(self, tmp_path):
        """Test that a broken transfer raises OneDriveNetworkError."""

        def handler(request):
            raise httpx.ReadError("reset", request=request)

        client = make_client(handler)
        with pytest.raises(OneDriveNetworkError):
            client.download_file("/a.txt", tmp_path / "a.txt")
        assert list(tmp_path.iterdir()) == []
