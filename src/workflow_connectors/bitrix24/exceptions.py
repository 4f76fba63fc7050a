from __future__ import annotations


class Bitrix24Error(RuntimeError):
    """Base error for the Bitrix24 request layer."""


class Bitrix24ConfigError(Bitrix24Error, ValueError):
    """Raised when configuration is missing or invalid."""


class CredentialConfigError(Bitrix24ConfigError):
    """Raised when the selected auth kind lacks its required credential fields."""


class RequestConfigError(Bitrix24ConfigError):
    """Raised for malformed caller-supplied request arguments (bad JSON, bad start offset)."""


class TokenRefreshError(Bitrix24Error):
    """Raised when the refresh-token grant cannot be performed or fails."""


class Bitrix24DownloadError(Bitrix24Error):
    """Raised when a file download fails."""
