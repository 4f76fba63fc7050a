from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from .exceptions import CredentialConfigError
from .schema import AuthKind, Credential, TokenCredential, WebhookCredential


logger = logging.getLogger(__name__)


def parse_auth_kind(configured_kind: Union[str, AuthKind, None]) -> AuthKind:
    """
    Map the host's selector value to an AuthKind.

    The host stores values like "oAuth2" or "apiKey"; matching is case-insensitive.
    """
    if isinstance(configured_kind, AuthKind):
        return configured_kind

    value = (configured_kind or "").strip().lower()
    try:
        return AuthKind(value)
    except ValueError as e:
        raise CredentialConfigError(
            f"Unknown auth type '{configured_kind}'. "
            f"Expected one of: {[k.value for k in AuthKind]}"
        ) from e


def _missing_fields(error: ValidationError) -> str:
    names = []
    for item in error.errors():
        loc = item.get("loc") or ("?",)
        names.append(str(loc[0]))
    return ", ".join(sorted(set(names)))


def resolve_credential(
    configured_kind: Union[str, AuthKind, None],
    raw_config: Optional[Mapping[str, Any]],
) -> Credential:
    """
    Build the normalized credential for the selected auth kind.

    Raises:
        CredentialConfigError: unknown selector or missing required fields.
    """
    kind = parse_auth_kind(configured_kind)
    data: Dict[str, Any] = dict(raw_config or {})

    try:
        if kind is AuthKind.WEBHOOK:
            return WebhookCredential.model_validate(data)

        data.pop("auth_kind", None)
        data["auth_kind"] = kind
        return TokenCredential.model_validate(data)
    except ValidationError as e:
        raise CredentialConfigError(
            f"Invalid {kind.value} credentials; check fields: {_missing_fields(e)}"
        ) from e


def resolve_fallback_webhook(
    raw_config: Optional[Mapping[str, Any]],
) -> Optional[WebhookCredential]:
    """Webhook credential configured next to a token credential, if any."""
    data = dict(raw_config or {})
    url = data.get("webhookUrl") or data.get("webhook_url")
    if not url or not str(url).strip():
        return None
    return WebhookCredential(webhook_url=str(url))


class CredentialResolver:
    """Resolves the active credential once and reports which kind is in use."""

    def __init__(
        self,
        configured_kind: Union[str, AuthKind, None],
        raw_config: Optional[Mapping[str, Any]],
    ) -> None:
        self.configured_kind = configured_kind
        self.raw_config = dict(raw_config or {})

    @property
    def active_kind(self) -> AuthKind:
        return parse_auth_kind(self.configured_kind)

    def resolve(self) -> Credential:
        credential = resolve_credential(self.configured_kind, self.raw_config)
        logger.debug(f"Resolved Bitrix24 credential of kind {credential.auth_kind.value}")
        return credential

    def fallback_webhook(self) -> Optional[WebhookCredential]:
        if self.active_kind is AuthKind.WEBHOOK:
            return None
        return resolve_fallback_webhook(self.raw_config)
