"""Access token acquisition from a stored refresh token."""

from __future__ import annotations

import logging

import httpx

from .exceptions import OneDriveAuthenticationError, OneDriveNetworkError

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "https://login.live.com/oauth20_token.srf"
REDIRECT_URI = "https://login.microsoftonline.com/common/oauth2/nativeclient"


class TokenProvider:
    """Exchanges a refresh token for a bearer access token."""

    def __init__(
        self,
        token_endpoint: str = TOKEN_ENDPOINT,
        redirect_uri: str = REDIRECT_URI,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token_endpoint = token_endpoint
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

    def refresh(self, client_id: str, client_secret: str, refresh_token: str) -> str:
        """Obtain a fresh access token.

        Args:
            client_id: Application (client) id
            client_secret: Application secret, may be empty for public clients
            refresh_token: Refresh token stored in the job configuration

        Returns:
            Bearer access token

        Raises:
            OneDriveAuthenticationError: If the token endpoint rejects the request
                or its response contains no access token
            OneDriveNetworkError: If the token endpoint cannot be reached
        """
        form = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            with httpx.Client(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = client.post(self.token_endpoint, data=form)
        except httpx.RequestError as e:
            raise OneDriveNetworkError(f"Token endpoint unreachable: {e}") from e

        if response.is_error:
            raise OneDriveAuthenticationError(
                f"Token refresh failed with status {response.status_code}: "
                f"{response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise OneDriveAuthenticationError(
                "Token endpoint returned invalid JSON"
            ) from e

        access_token = None
        if isinstance(payload, dict):
            access_token = payload.get("access_token")
        if not access_token:
            raise OneDriveAuthenticationError("No access_token in token response")

        logger.debug("Obtained access token for client %s", client_id)
        return access_token
