"""
Workflow Connectors - Bitrix24 request layer

Resource handlers call the Bitrix24 REST API through this package without
knowing which auth scheme is configured, how expired tokens are refreshed,
what shape errors arrive in, or how list endpoints are paged.

Usage:
------
    from workflow_connectors.bitrix24 import Bitrix24Client, RequestOptions

    client = Bitrix24Client.from_config(
        "apikey",
        {"portalUrl": "https://example.bitrix24.com", "accessToken": "..."},
    )

    result = client.execute("crm.deal.get", query={"id": 42})
    if result.ok:
        deal = result.payload["result"]
    else:
        print(result.error.code, result.error.description)

    # All pages of a list endpoint
    tasks = client.collect_all_pages("tasks.task.list", result_key="tasks")

    # A refreshed token is handed back, never persisted here
    if client.refreshed_token:
        store(client.refreshed_token)

Configuration:
--------------
See workflow_connectors.bitrix24.config for the BITRIX24_* environment
variables and the YAML connection profile format.
"""

# -----------------------------------------------------------------------------
# Transport
# -----------------------------------------------------------------------------
from .client_base import (
    BaseAPIClient,
    APIClientError,
    APIClientHTTPError,
    APIClientTimeout,
)

# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------
from .exceptions import (
    Bitrix24Error,
    Bitrix24ConfigError,
    Bitrix24DownloadError,
    CredentialConfigError,
    RequestConfigError,
    TokenRefreshError,
)

# -----------------------------------------------------------------------------
# Data model
# -----------------------------------------------------------------------------
from .schema import (
    PAGE_SIZE,
    ApiError,
    ApiResult,
    AuthKind,
    Credential,
    Failure,
    PaginationState,
    RequestAuth,
    RequestDescriptor,
    RequestOptions,
    Success,
    TokenCredential,
    TokenPair,
    WebhookCredential,
)

# -----------------------------------------------------------------------------
# Components
# -----------------------------------------------------------------------------
from .config import ExecutorConfig, load_connection_profile, credentials_from_env
from .credentials import CredentialResolver, resolve_credential
from .normalizer import TransportFailure, normalize_error
from .token_refresher import TokenRefresher
from .executor import RequestExecutor
from .pagination import collect_all_pages
from .client import Bitrix24Client, parse_json_argument


__all__ = [
    # Transport
    "BaseAPIClient",
    "APIClientError",
    "APIClientHTTPError",
    "APIClientTimeout",
    # Errors
    "Bitrix24Error",
    "Bitrix24ConfigError",
    "Bitrix24DownloadError",
    "CredentialConfigError",
    "RequestConfigError",
    "TokenRefreshError",
    # Data model
    "PAGE_SIZE",
    "ApiError",
    "ApiResult",
    "AuthKind",
    "Credential",
    "Failure",
    "PaginationState",
    "RequestAuth",
    "RequestDescriptor",
    "RequestOptions",
    "Success",
    "TokenCredential",
    "TokenPair",
    "WebhookCredential",
    # Components
    "ExecutorConfig",
    "load_connection_profile",
    "credentials_from_env",
    "CredentialResolver",
    "resolve_credential",
    "TransportFailure",
    "normalize_error",
    "TokenRefresher",
    "RequestExecutor",
    "collect_all_pages",
    "Bitrix24Client",
    "parse_json_argument",
]
