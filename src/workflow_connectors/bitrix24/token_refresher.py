from __future__ import annotations

import logging
from typing import Any, Optional

from .client_base import APIClientError, APIClientHTTPError, BaseAPIClient
from .config import ExecutorConfig
from .exceptions import TokenRefreshError
from .schema import TokenCredential, TokenPair


logger = logging.getLogger(__name__)


class TokenRefresher(BaseAPIClient):
    """
    Performs the OAuth refresh-token grant against the platform token endpoint.

    The grant is a GET carrying grant_type, client_id, client_secret and
    refresh_token as query parameters. Any problem raises TokenRefreshError;
    the caller decides what to do next, the refresher never retries.
    """

    def __init__(
        self,
        config: Optional[ExecutorConfig] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ExecutorConfig()
        self.log = log or logger
        super().__init__(
            timeout=self.config.timeout,
            retries=self.config.connection_retries,
            user_agent=self.config.user_agent,
        )

    def refresh(self, credential: TokenCredential) -> TokenPair:
        if not credential.refresh_token:
            raise TokenRefreshError("No refresh token available")
        if not credential.client_id or not credential.client_secret:
            raise TokenRefreshError(
                "Client ID and Client Secret are required for token refresh"
            )

        params = {
            "grant_type": "refresh_token",
            "client_id": credential.client_id,
            "client_secret": credential.client_secret,
            "refresh_token": credential.refresh_token,
        }

        self.log.info(f"Refreshing Bitrix24 access token for {credential.portal_url}")
        try:
            data = self.get_json(self.config.token_url, params=params)
        except APIClientHTTPError as e:
            detail = e.body.get("error_description") if isinstance(e.body, dict) else None
            raise TokenRefreshError(
                f"Failed to refresh access token: {detail or e}"
            ) from e
        except APIClientError as e:
            raise TokenRefreshError(f"Failed to refresh access token: {e}") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise TokenRefreshError("Failed to refresh access token: no token returned")

        return TokenPair(
            access_token=str(data["access_token"]),
            refresh_token=str(data.get("refresh_token") or credential.refresh_token),
            expires_in=_as_seconds(data.get("expires_in")),
        )


def _as_seconds(value: Any) -> Optional[int]:
    """`expires_in` arrives as a number or a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except (ValueError, OverflowError):
            return None
    return None
