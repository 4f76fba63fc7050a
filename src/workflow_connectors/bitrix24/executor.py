"""
Request execution for the Bitrix24 REST API.

One call flows through:

    build URL for the auth path -> POST -> classify response
        -> (401 expired_token + refresh token) refresh once -> re-issue once
        -> (still 401, fallback enabled) webhook attempt once

Every API-level failure comes back as a Failure value. Only configuration
problems (wrong credential for the requested path, malformed webhook URL)
raise.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from .client_base import APIClientError, BaseAPIClient
from .config import ExecutorConfig
from .exceptions import CredentialConfigError, TokenRefreshError
from .normalizer import EXPIRED_TOKEN, TransportFailure, normalize_error
from .schema import (
    ApiError,
    ApiResult,
    Credential,
    Failure,
    RequestAuth,
    RequestDescriptor,
    Success,
    TokenCredential,
    TokenPair,
    WebhookCredential,
)
from .token_refresher import TokenRefresher


logger = logging.getLogger(__name__)


class RequestExecutor:
    """Sends one logical request, with at most one refresh-and-retry cycle."""

    def __init__(
        self,
        config: Optional[ExecutorConfig] = None,
        transport: Optional[BaseAPIClient] = None,
        refresher: Optional[TokenRefresher] = None,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or ExecutorConfig()
        self.log = log or logger
        self.transport = transport or BaseAPIClient(
            timeout=self.config.timeout,
            retries=self.config.connection_retries,
            user_agent=self.config.user_agent,
        )
        self.refresher = refresher or TokenRefresher(self.config, log=self.log)

    # -------------------------------------------------
    # Public method
    # -------------------------------------------------
    def execute(
        self,
        descriptor: RequestDescriptor,
        credential: Credential,
        webhook_credential: Optional[WebhookCredential] = None,
    ) -> ApiResult:
        path = self._select_path(descriptor, credential, webhook_credential)

        if isinstance(credential, TokenCredential) and path is RequestAuth.TOKEN:
            return self._execute_token(descriptor, credential, webhook_credential)

        webhook = credential if isinstance(credential, WebhookCredential) else webhook_credential
        return self._send_webhook(descriptor, webhook)

    # -------------------------------------------------
    # Path selection
    # -------------------------------------------------
    @staticmethod
    def _select_path(
        descriptor: RequestDescriptor,
        credential: Credential,
        webhook_credential: Optional[WebhookCredential],
    ) -> RequestAuth:
        if descriptor.auth is RequestAuth.TOKEN:
            if not isinstance(credential, TokenCredential):
                raise CredentialConfigError(
                    "Token auth requested but only webhook credentials are configured."
                )
            return RequestAuth.TOKEN

        if descriptor.auth is RequestAuth.WEBHOOK:
            if isinstance(credential, WebhookCredential) or webhook_credential is not None:
                return RequestAuth.WEBHOOK
            raise CredentialConfigError(
                "Webhook auth requested but no webhook URL is configured."
            )

        if isinstance(credential, WebhookCredential):
            return RequestAuth.WEBHOOK
        return RequestAuth.TOKEN

    # -------------------------------------------------
    # Token path
    # -------------------------------------------------
    def _execute_token(
        self,
        descriptor: RequestDescriptor,
        credential: TokenCredential,
        webhook_credential: Optional[WebhookCredential],
    ) -> ApiResult:
        label = credential.auth_kind.value
        result = self._send_token(descriptor, credential)
        refreshed: Optional[TokenPair] = None

        if isinstance(result, Failure) and self._is_expired_token(result.error) and credential.can_refresh:
            try:
                refreshed = self.refresher.refresh(credential)
            except TokenRefreshError as e:
                self.log.warning(f"Token refresh failed for {descriptor.endpoint}: {e}")
                result = Failure(error=self._refresh_failure(result.error, e))
            else:
                self.log.info(f"Access token refreshed; retrying {descriptor.endpoint} once")
                retry_descriptor = descriptor.model_copy(
                    update={"access_token_override": refreshed.access_token}
                )
                result = self._send_token(retry_descriptor, credential)

        if (
            isinstance(result, Failure)
            and result.error.http_status == 401
            and descriptor.allow_webhook_fallback
            and webhook_credential is not None
        ):
            self.log.warning(
                f"{label} auth still rejected for {descriptor.endpoint}; falling back to webhook"
            )
            fallback = descriptor.model_copy(update={"access_token_override": None})
            result = self._send_webhook(fallback, webhook_credential)

        if refreshed is not None:
            result = result.model_copy(update={"refreshed_token": refreshed})
        return result

    @staticmethod
    def _is_expired_token(error: ApiError) -> bool:
        return error.http_status == 401 and error.code == EXPIRED_TOKEN

    @staticmethod
    def _refresh_failure(original: ApiError, error: TokenRefreshError) -> ApiError:
        return ApiError(
            code=EXPIRED_TOKEN,
            description=f"Token refresh failed: {error}",
            http_status=401,
            raw={"original_error": original.raw, "refresh_error": str(error)},
        )

    def _send_token(
        self, descriptor: RequestDescriptor, credential: TokenCredential
    ) -> ApiResult:
        token = descriptor.access_token_override or credential.access_token
        url = f"{credential.portal_url}/rest/{descriptor.endpoint}"
        # the credential token replaces any caller-supplied `auth` query value
        query = {**descriptor.query, "auth": token}
        return self._send(url, descriptor.body, query, credential.auth_kind.value)

    # -------------------------------------------------
    # Webhook path
    # -------------------------------------------------
    def _send_webhook(
        self, descriptor: RequestDescriptor, credential: WebhookCredential
    ) -> ApiResult:
        url, query = self.webhook_target(descriptor, credential)
        return self._send(url, descriptor.body, query, "webhook")

    @staticmethod
    def webhook_target(
        descriptor: RequestDescriptor, credential: WebhookCredential
    ) -> Tuple[str, Dict[str, Any]]:
        """
        URL and query for a webhook call.

        With a token override the webhook's scheme and host are reused and
        the token travels as `auth`; otherwise the webhook URL is used as is.
        """
        query = dict(descriptor.query)
        if descriptor.access_token_override:
            parsed = urlparse(credential.webhook_url)
            if not parsed.scheme or not parsed.netloc:
                raise CredentialConfigError(
                    f"Invalid webhook URL format: '{credential.webhook_url}'"
                )
            query["auth"] = descriptor.access_token_override
            return f"{parsed.scheme}://{parsed.netloc}/rest/{descriptor.endpoint}", query
        return f"{credential.webhook_url}/{descriptor.endpoint}", query

    # -------------------------------------------------
    # Transport + classification
    # -------------------------------------------------
    def _send(
        self, url: str, body: Dict[str, Any], query: Dict[str, Any], label: str
    ) -> ApiResult:
        if self.config.debug:
            # never log the query: it carries the token
            self.log.debug(f"POST {url} ({label})")

        try:
            response = self.transport.send("POST", url, params=query, json_body=body)
        except APIClientError as e:
            self.log.error(f"Bitrix24 request to {url} failed: {e}")
            return Failure(
                error=normalize_error(TransportFailure(message=str(e), url=url), label)
            )

        status = response.status_code
        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        if self.config.debug:
            self.log.debug(f"HTTP {status} from {url}")

        if 200 <= status < 300:
            if isinstance(data, dict):
                if data.get("error"):
                    in_body_status = data.get("status")
                    failure = TransportFailure(
                        status_code=in_body_status if isinstance(in_body_status, int) else 400,
                        body=data,
                        url=url,
                    )
                    return Failure(error=normalize_error(failure, label))
                return Success(payload=data)
            return Success(payload={"result": data})

        error = normalize_error(
            TransportFailure(status_code=status, body=data, message=f"HTTP {status}", url=url),
            label,
        )
        self.log.info(f"Bitrix24 call to {url} failed: {error.code} ({error.http_status})")
        return Failure(error=error)
