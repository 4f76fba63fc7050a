"""
Runtime configuration for the Bitrix24 request layer.

Settings come from three places, in this order of precedence:

1. Explicit arguments (an ExecutorConfig built by the host)
2. Environment variables (ExecutorConfig.from_env / credentials_from_env)
3. A YAML connection profile (load_connection_profile)

Environment variables:

    BITRIX24_TIMEOUT_SEC     - Request timeout (default: 15)
    BITRIX24_DEBUG           - "1"/"true" enables per-request debug logging
    BITRIX24_TOKEN_URL       - Refresh grant endpoint override
    BITRIX24_MAX_PAGES       - Optional safety cap for pagination

    BITRIX24_AUTH_TYPE       - oauth2 | apikey | webhook
    BITRIX24_PORTAL_URL, BITRIX24_ACCESS_TOKEN, BITRIX24_REFRESH_TOKEN,
    BITRIX24_CLIENT_ID, BITRIX24_CLIENT_SECRET, BITRIX24_WEBHOOK_URL
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field

from .exceptions import Bitrix24ConfigError
from .schema import RequestOptions


DEFAULT_TOKEN_URL = "https://oauth.bitrix.info/oauth/token/"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}

_CREDENTIAL_ENV = {
    "portalUrl": "BITRIX24_PORTAL_URL",
    "accessToken": "BITRIX24_ACCESS_TOKEN",
    "refreshToken": "BITRIX24_REFRESH_TOKEN",
    "clientId": "BITRIX24_CLIENT_ID",
    "clientSecret": "BITRIX24_CLIENT_SECRET",
    "webhookUrl": "BITRIX24_WEBHOOK_URL",
}


class ExecutorConfig(BaseModel):
    """Construction-time settings shared by the executor and the refresher."""

    timeout: float = Field(15.0, gt=0)
    debug: bool = False
    token_url: str = DEFAULT_TOKEN_URL
    user_agent: str = "WorkflowConnectors-Bitrix24/1.0"
    connection_retries: int = Field(0, ge=0)
    max_pages: Optional[int] = Field(None, gt=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExecutorConfig":
        env = os.environ if environ is None else environ

        timeout_raw = env.get("BITRIX24_TIMEOUT_SEC", "15").strip()
        try:
            timeout = float(timeout_raw)
        except ValueError as e:
            raise Bitrix24ConfigError(
                f"BITRIX24_TIMEOUT_SEC must be a number, got '{timeout_raw}'."
            ) from e
        if timeout <= 0:
            raise Bitrix24ConfigError(
                f"BITRIX24_TIMEOUT_SEC must be positive, got '{timeout_raw}'."
            )

        max_pages_raw = env.get("BITRIX24_MAX_PAGES", "").strip()
        max_pages: Optional[int] = None
        if max_pages_raw:
            try:
                max_pages = int(max_pages_raw)
            except ValueError as e:
                raise Bitrix24ConfigError(
                    f"BITRIX24_MAX_PAGES must be an integer, got '{max_pages_raw}'."
                ) from e
            if max_pages <= 0:
                raise Bitrix24ConfigError(
                    f"BITRIX24_MAX_PAGES must be positive, got '{max_pages_raw}'."
                )

        return cls(
            timeout=timeout,
            debug=parse_bool(env.get("BITRIX24_DEBUG", ""), "BITRIX24_DEBUG"),
            token_url=env.get("BITRIX24_TOKEN_URL") or DEFAULT_TOKEN_URL,
            max_pages=max_pages,
        )


def parse_bool(value: Union[str, bool, None], name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = (value or "").strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise Bitrix24ConfigError(f"{name} must be a boolean flag, got '{value}'.")


def credentials_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[str, Dict[str, Any]]:
    """Return (auth_type, raw_config) read from BITRIX24_* variables."""
    env = os.environ if environ is None else environ
    raw = {key: env[var] for key, var in _CREDENTIAL_ENV.items() if env.get(var)}
    auth_type = env.get("BITRIX24_AUTH_TYPE", "").strip()
    if not auth_type:
        auth_type = "webhook" if "webhookUrl" in raw and "accessToken" not in raw else "oauth2"
    return auth_type, raw


class ConnectionProfile(BaseModel):
    """
    Parsed YAML connection profile.

    Example:

        auth_type: apikey
        credentials:
          portalUrl: https://example.bitrix24.com
          accessToken: abc
        options:
          allow_webhook_fallback: false
    """

    auth_type: str
    credentials: Dict[str, Any] = Field(default_factory=dict)
    options: RequestOptions = Field(default_factory=RequestOptions)


def load_connection_profile(path: Union[str, Path]) -> ConnectionProfile:
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise Bitrix24ConfigError(f"Cannot read connection profile {path}: {e}") from e
    except yaml.YAMLError as e:
        raise Bitrix24ConfigError(f"Invalid YAML in connection profile {path}: {e}") from e

    if not isinstance(data, dict) or not data.get("auth_type"):
        raise Bitrix24ConfigError(
            f"Connection profile {path} must be a mapping with an 'auth_type' key."
        )

    try:
        return ConnectionProfile.model_validate(data)
    except ValueError as e:
        raise Bitrix24ConfigError(f"Invalid connection profile {path}: {e}") from e
