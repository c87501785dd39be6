"""API client for the Microsoft Graph drive endpoints."""

from __future__ import annotations

import logging
import os
import random
import time
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from .exceptions import (
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
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DOWNLOAD_CHUNK_SIZE,
    GRAPH_API_URL,
    LIST_PAGE_SIZE,
    normalize_remote_root,
)

logger = logging.getLogger(__name__)


class OneDriveClient:
    """Client for the OneDrive endpoints of the Microsoft Graph API."""

    def __init__(
        self,
        access_token: str,
        api_url: str = GRAPH_API_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Graph API client.

        Args:
            access_token: Bearer token obtained from the token endpoint
            api_url: Graph API base URL
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        self.access_token = access_token
        self.api_url = api_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def __enter__(self) -> OneDriveClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _url(self, endpoint: str) -> str:
        """Build an absolute URL; nextLink/deltaLink values are used as-is."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.api_url}/{endpoint.lstrip('/')}"

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False
        return isinstance(exception, (OneDriveNetworkError, OneDriveRateLimitError))

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # +/- 25% jitter
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[Exception, bool]:
        """Map an HTTP error to an exception and decide whether to retry.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code

        if status_code == 401:
            raise OneDriveAuthenticationError(
                "Access token rejected or expired"
            ) from e
        elif status_code == 403:
            raise OneDrivePermissionError(
                "Access forbidden - check the granted scopes"
            ) from e
        elif status_code == 404:
            raise OneDriveNotFoundError(f"Resource not found: {e.request.url}") from e
        elif status_code == 410:
            raise OneDriveDeltaExpiredError(
                "Delta link expired - a full resynchronization is required"
            ) from e
        elif status_code == 429:
            error = OneDriveRateLimitError("Rate limit exceeded")
            return (error, attempt < self.max_retries)

        error_msg = f"API request failed with status {status_code}"
        try:
            error_data = e.response.json()
            if isinstance(error_data, dict):
                detail = error_data.get("error")
                if isinstance(detail, dict):
                    detail = detail.get("message")
                if detail:
                    error_msg = f"{error_msg}: {detail}"
        except ValueError:
            pass

        error = OneDriveAPIError(error_msg)
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (error, should_retry)

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request with retry logic.

        Args:
            method: HTTP method
            endpoint: API endpoint path or absolute URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data

        Raises:
            OneDriveAPIError: If the request fails after all retries
        """
        url = self._url(endpoint)
        last_exception: Exception | None = None
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()

                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError as e:
                    raise OneDriveInvalidResponseError(
                        f"Invalid JSON response from {url}"
                    ) from e

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error

                if should_retry:
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        "Retrying %s %s in %.1fs (%s)", method, url, delay, error
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except OneDriveAPIError:
                raise
            except httpx.RequestError as e:
                error = OneDriveNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, attempt):
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        "Retrying %s %s in %.1fs (%s)", method, url, delay, error
                    )
                    time.sleep(delay)
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise OneDriveAPIError("Request failed after all retry attempts")

    # =========================
    # Listing Operations
    # =========================

    def children_url(self, item_id: str | None = None, path: str | None = None) -> str:
        """Build the first-page URL for listing the children of a folder.

        Args:
            item_id: Drive item id of the folder (takes precedence)
            path: Folder path relative to the drive root ("" for the root)

        Returns:
            Endpoint for the children listing
        """
        if item_id:
            return f"me/drive/items/{item_id}/children?$top={LIST_PAGE_SIZE}"
        root = normalize_remote_root(path)
        if not root:
            return f"me/drive/root/children?$top={LIST_PAGE_SIZE}"
        return f"me/drive/root:{quote(root)}:/children?$top={LIST_PAGE_SIZE}"

    def get_children_page(self, url: str) -> Any:
        """Fetch one page of a children listing.

        Args:
            url: First-page endpoint or an @odata.nextLink

        Returns:
            Response JSON with "value" and optional "@odata.nextLink"
        """
        return self._request("GET", url)

    # =========================
    # Delta Operations
    # =========================

    def delta_url(self, path: str | None = None) -> str:
        """Build the URL that starts a fresh delta round for a folder.

        Args:
            path: Folder path relative to the drive root ("" for the root)

        Returns:
            Endpoint for the initial delta request
        """
        root = normalize_remote_root(path)
        if not root:
            return "me/drive/root/delta"
        return f"me/drive/root:{quote(root)}:/delta"

    def get_delta_page(self, url: str) -> Any:
        """Fetch one page of the delta feed.

        Args:
            url: Initial delta endpoint, @odata.nextLink or stored @odata.deltaLink

        Returns:
            Response JSON with "value" and either "@odata.nextLink" or
            "@odata.deltaLink"

        Raises:
            OneDriveDeltaExpiredError: If the stored link is no longer valid
        """
        return self._request("GET", url)

    # =========================
    # Download Operations
    # =========================

    def content_url(self, path: str) -> str:
        """Build the content endpoint for a file path relative to the drive root."""
        return f"me/drive/root:/{quote(path.lstrip('/'))}:/content"

    def download_file(
        self,
        path: str,
        output_path: Path,
        timeout: int = 300,
    ) -> int:
        """Download a file and stream it to disk.

        The content is written to a temporary sibling file which replaces
        output_path only once the whole body has been received, so a failed
        transfer leaves an existing local copy untouched.

        Args:
            path: File path relative to the drive root
            output_path: Local path where the file is saved
            timeout: Request timeout in seconds (default: 300)

        Returns:
            Number of bytes written

        Raises:
            OneDriveDownloadError: If the server rejects the request or the
                file cannot be written
            OneDriveNetworkError: If the transfer is interrupted
        """
        url = self._url(self.content_url(path))
        client = self._get_client()
        partial_path = output_path.with_name(output_path.name + ".part")

        try:
            with client.stream("GET", url, timeout=timeout) as response:
                response.raise_for_status()

                bytes_downloaded = 0

                output_path.parent.mkdir(parents=True, exist_ok=True)
                with open(partial_path, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            bytes_downloaded += len(chunk)

            os.replace(partial_path, output_path)
            return bytes_downloaded

        except httpx.HTTPStatusError as e:
            raise OneDriveDownloadError(
                f"Download of {path} failed with status {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            self._discard_partial(partial_path)
            raise OneDriveNetworkError(
                f"Network error during download of {path}: {e}"
            ) from e
        except OSError as e:
            self._discard_partial(partial_path)
            raise OneDriveDownloadError(f"Failed to write {output_path}: {e}") from e

    @staticmethod
    def _discard_partial(partial_path: Path) -> None:
        try:
            partial_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug("Could not remove %s: %s", partial_path, e)
