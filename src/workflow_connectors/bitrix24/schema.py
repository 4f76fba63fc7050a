from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


PAGE_SIZE = 50


class AuthKind(str, Enum):
    """Auth scheme selected in the host configuration."""

    OAUTH2 = "oauth2"
    APIKEY = "apikey"
    WEBHOOK = "webhook"


class RequestAuth(str, Enum):
    """Which path a single request takes."""

    AUTO = "auto"
    TOKEN = "token"
    WEBHOOK = "webhook"


def _strip_trailing_slash(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip().rstrip("/")
    return v


def _blank_to_none(v: Any) -> Any:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# ------------------------------
# Credentials
# ------------------------------


class TokenCredential(BaseModel):
    """
    Portal URL plus access token.

    Covers both OAuth2-issued tokens and raw API-key tokens; requests are
    made the same way for both, only `auth_kind` differs.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    portal_url: str = Field(..., alias="portalUrl", min_length=1)
    access_token: str = Field(..., alias="accessToken", min_length=1)
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    client_id: Optional[str] = Field(None, alias="clientId")
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    auth_kind: AuthKind = AuthKind.OAUTH2

    @field_validator("portal_url", mode="before")
    @classmethod
    def normalize_portal_url(cls, v):
        return _strip_trailing_slash(v)

    @field_validator("access_token", mode="before")
    @classmethod
    def strip_access_token(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("refresh_token", "client_id", "client_secret", mode="before")
    @classmethod
    def optional_secrets(cls, v):
        return _blank_to_none(v)

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def with_tokens(self, pair: "TokenPair") -> "TokenCredential":
        """Copy carrying a refreshed pair; each grant replaces the refresh token."""
        return self.model_copy(
            update={
                "access_token": pair.access_token,
                "refresh_token": pair.refresh_token or self.refresh_token,
            }
        )


class WebhookCredential(BaseModel):
    """Pre-authenticated webhook URL, e.g. https://portal.bitrix24.com/rest/1/code"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    webhook_url: str = Field(..., alias="webhookUrl", min_length=1)

    @field_validator("webhook_url", mode="before")
    @classmethod
    def normalize_webhook_url(cls, v):
        return _strip_trailing_slash(v)

    @property
    def auth_kind(self) -> AuthKind:
        return AuthKind.WEBHOOK


Credential = Union[TokenCredential, WebhookCredential]


class TokenPair(BaseModel):
    """Tokens returned by the refresh grant. Persisting them is the caller's job."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


# ------------------------------
# Requests
# ------------------------------


class RequestOptions(BaseModel):
    """
    Per-call options, merged once at the call boundary.

    Precedence: options passed to a call override the client's defaults,
    field by field, and only for fields the caller explicitly set.
    """

    auth: RequestAuth = RequestAuth.AUTO
    access_token: Optional[str] = None
    allow_webhook_fallback: bool = False

    @field_validator("access_token", mode="before")
    @classmethod
    def clean_access_token(cls, v):
        return _blank_to_none(v)

    def merged_with(self, other: Optional["RequestOptions"]) -> "RequestOptions":
        if other is None:
            return self
        return self.model_copy(update=other.model_dump(exclude_unset=True))


class RequestDescriptor(BaseModel):
    endpoint: str = Field(..., min_length=1)
    body: Dict[str, Any] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    auth: RequestAuth = RequestAuth.AUTO
    access_token_override: Optional[str] = None
    allow_webhook_fallback: bool = False

    @field_validator("endpoint", mode="before")
    @classmethod
    def normalize_endpoint(cls, v):
        if isinstance(v, str):
            return v.strip().lstrip("/")
        return v

    @field_validator("body", "query", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return {} if v is None else v

    @field_validator("access_token_override", mode="before")
    @classmethod
    def clean_override(cls, v):
        return _blank_to_none(v)

    @classmethod
    def build(
        cls,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        options: Optional[RequestOptions] = None,
    ) -> "RequestDescriptor":
        options = options or RequestOptions()
        return cls(
            endpoint=endpoint,
            body=dict(body or {}),
            query=dict(query or {}),
            auth=options.auth,
            access_token_override=options.access_token,
            allow_webhook_fallback=options.allow_webhook_fallback,
        )


# ------------------------------
# Results
# ------------------------------


class ApiError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    description: str
    http_status: int = 500
    raw: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Platform-shaped error object, as returned by the REST API itself."""
        return {
            "error": self.code,
            "error_description": self.description,
            "status": self.http_status,
            "original_error": self.raw,
        }


class Success(BaseModel):
    payload: Dict[str, Any]
    refreshed_token: Optional[TokenPair] = None

    @property
    def ok(self) -> bool:
        return True


class Failure(BaseModel):
    error: ApiError
    refreshed_token: Optional[TokenPair] = None

    @property
    def ok(self) -> bool:
        return False


ApiResult = Union[Success, Failure]


class PaginationState(BaseModel):
    offset: int = Field(0, ge=0)
    page_size: int = PAGE_SIZE

    def advance(self) -> "PaginationState":
        return PaginationState(offset=self.offset + self.page_size, page_size=self.page_size)
