from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .client_base import APIClientError
from .config import ExecutorConfig, load_connection_profile
from .credentials import CredentialResolver
from .exceptions import Bitrix24DownloadError, RequestConfigError
from .executor import RequestExecutor
from .pagination import collect_all_pages
from .schema import (
    ApiResult,
    AuthKind,
    Credential,
    RequestDescriptor,
    RequestOptions,
    Success,
    TokenCredential,
    TokenPair,
    WebhookCredential,
)


logger = logging.getLogger(__name__)

# Label keys tried, in order, for custom (UF_*) and standard entity fields.
_CUSTOM_FIELD_LABELS = (
    "formLabel",
    "listLabel",
    "editFormLabel",
    "title",
    "NAME",
    "name",
    "FIELD_NAME",
)
_STANDARD_FIELD_LABELS = ("title", "formLabel", "listLabel", "NAME", "name")


def parse_json_argument(value: Union[str, Mapping[str, Any], None], what: str = "argument") -> Dict[str, Any]:
    """
    Accept a dict or a JSON object string from the host's UI fields.

    Raises:
        RequestConfigError: the string is not valid JSON or not an object.
    """
    if value is None or value == "":
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError) as e:
        raise RequestConfigError(f"Invalid JSON in {what}: {e}") from e
    if not isinstance(parsed, dict):
        raise RequestConfigError(f"Invalid JSON in {what}: expected an object")
    return parsed


class Bitrix24Client:
    """
    Entry point used by the per-resource handlers.

    Holds one resolved credential (plus an optional webhook credential for
    fallback) and exposes the two request contracts:

    - execute(endpoint, body, query, options) -> Success | Failure
    - collect_all_pages(endpoint, body, query, result_key) -> items

    A refreshed pair replaces the tokens of `credential` for later calls
    and is exposed as `refreshed_token`; persisting it is up to the host.
    """

    def __init__(
        self,
        credential: Credential,
        webhook_credential: Optional[WebhookCredential] = None,
        config: Optional[ExecutorConfig] = None,
        defaults: Optional[RequestOptions] = None,
        log: Optional[logging.Logger] = None,
        executor: Optional[RequestExecutor] = None,
    ) -> None:
        self.credential = credential
        self.webhook_credential = webhook_credential
        self.config = config or ExecutorConfig()
        self.defaults = defaults or RequestOptions()
        self.log = log or logger
        self.executor = executor or RequestExecutor(self.config, log=self.log)
        self.refreshed_token: Optional[TokenPair] = None

    @classmethod
    def from_config(
        cls,
        configured_kind: Union[str, AuthKind, None],
        raw_config: Optional[Mapping[str, Any]],
        config: Optional[ExecutorConfig] = None,
        defaults: Optional[RequestOptions] = None,
        log: Optional[logging.Logger] = None,
    ) -> "Bitrix24Client":
        resolver = CredentialResolver(configured_kind, raw_config)
        return cls(
            credential=resolver.resolve(),
            webhook_credential=resolver.fallback_webhook(),
            config=config,
            defaults=defaults,
            log=log,
        )

    @classmethod
    def from_profile(
        cls,
        path: Union[str, Path],
        config: Optional[ExecutorConfig] = None,
        log: Optional[logging.Logger] = None,
    ) -> "Bitrix24Client":
        profile = load_connection_profile(path)
        return cls.from_config(
            profile.auth_type,
            profile.credentials,
            config=config,
            defaults=profile.options,
            log=log,
        )

    @property
    def active_kind(self) -> AuthKind:
        return self.credential.auth_kind

    # -------------------------------------------------
    # Request contracts
    # -------------------------------------------------
    def _descriptor(
        self,
        endpoint: str,
        body: Optional[Mapping[str, Any]],
        query: Optional[Mapping[str, Any]],
        options: Optional[RequestOptions],
    ) -> RequestDescriptor:
        merged = self.defaults.merged_with(options)
        return RequestDescriptor.build(
            endpoint,
            body=dict(body or {}),
            query=dict(query or {}),
            options=merged,
        )

    def _remember_token(self, token: TokenPair) -> None:
        self.log.info("Bitrix24 access token was refreshed; caller should persist it")
        self.refreshed_token = token
        if isinstance(self.credential, TokenCredential):
            self.credential = self.credential.with_tokens(token)

    def execute(
        self,
        endpoint: str,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> ApiResult:
        descriptor = self._descriptor(endpoint, body, query, options)
        result = self.executor.execute(descriptor, self.credential, self.webhook_credential)
        if result.refreshed_token is not None:
            self._remember_token(result.refreshed_token)
        return result

    def collect_all_pages(
        self,
        endpoint: str,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        result_key: str = "items",
        options: Optional[RequestOptions] = None,
    ) -> Union[List[Any], Dict[str, Any]]:
        descriptor = self._descriptor(endpoint, body, query, options)
        return collect_all_pages(
            self.executor,
            descriptor,
            self.credential,
            result_key,
            webhook_credential=self.webhook_credential,
            on_token_refresh=self._remember_token,
        )

    def execute_many(self, calls: Iterable[Mapping[str, Any]]) -> List[ApiResult]:
        """
        Run several calls in order. A failed call does not stop the rest.

        Each call is a mapping with `endpoint` and optional `body`, `query`
        and `options` (a RequestOptions or a dict of its fields).
        """
        results: List[ApiResult] = []
        for call in calls:
            options = call.get("options")
            if isinstance(options, Mapping):
                options = RequestOptions.model_validate(dict(options))
            results.append(
                self.execute(
                    call["endpoint"],
                    body=call.get("body"),
                    query=call.get("query"),
                    options=options,
                )
            )
        failed = sum(1 for r in results if not r.ok)
        if failed:
            self.log.warning(f"{failed} of {len(results)} Bitrix24 calls failed")
        return results

    # -------------------------------------------------
    # Helpers used by resource handlers
    # -------------------------------------------------
    def check_connection(self) -> bool:
        """True if `user.current` answers successfully with the active credential."""
        result = self.execute("user.current")
        if not result.ok:
            self.log.warning(f"Bitrix24 connection check failed: {result.error.description}")
        return result.ok

    def get_entity_fields(self, entity_type: str) -> List[Dict[str, str]]:
        """
        Field options for a CRM entity (deal, lead, contact, ...), suitable
        for dropdown selectors.
        """
        result = self.execute(f"crm.{entity_type}.fields")
        if not isinstance(result, Success):
            return []
        fields = result.payload.get("result")
        if not isinstance(fields, dict):
            return []

        options: List[Dict[str, str]] = []
        for key, field in fields.items():
            field = field if isinstance(field, dict) else {}
            if key.startswith("UF_"):
                label = _first_label(field, _CUSTOM_FIELD_LABELS) or f"Custom Field: {key}"
                options.append(
                    {"name": label, "value": key, "description": f"Custom field ({key})"}
                )
            else:
                options.append(
                    {"name": _first_label(field, _STANDARD_FIELD_LABELS) or key, "value": key}
                )
        return options

    def download_file(self, url: str) -> bytes:
        try:
            return self.executor.transport.get_bytes(url)
        except APIClientError as e:
            raise Bitrix24DownloadError(f"Failed to download file: {e}") from e

    def close(self) -> None:
        self.executor.transport.close()
        self.executor.refresher.close()

    def __enter__(self) -> "Bitrix24Client":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _first_label(field: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = field.get(key)
        if value:
            return str(value)
    return None
