from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .schema import ApiError


logger = logging.getLogger(__name__)

AUTH_FAILED = "AUTH_FAILED"
ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
EXPIRED_TOKEN = "expired_token"
UNKNOWN_ERROR = "UNKNOWN_ERROR"

DEFAULT_STATUS = 500
DEFAULT_DESCRIPTION = "Unknown Bitrix24 API error"

# Some failures arrive as a literal "<status> - <json or text>" body.
_STATUS_PREFIX_RE = re.compile(r"^(\d+)\s*-\s*(.*)$", re.DOTALL)


@dataclass(frozen=True)
class TransportFailure:
    """What the transport saw when a call did not succeed."""

    status_code: Optional[int] = None
    body: Any = None
    message: str = ""
    url: str = ""


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    try:
        text = value if isinstance(value, str) else str(value)
    except Exception:
        return default
    return text or default


def _looks_like_object(text: str) -> bool:
    return text.startswith("{") and text.endswith("}")


def _parse_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _from_error_object(
    obj: Dict[str, Any], status: int, fallback_code: str = UNKNOWN_ERROR
) -> ApiError:
    return ApiError(
        code=_text(obj.get("error"), fallback_code),
        description=_text(obj.get("error_description"), DEFAULT_DESCRIPTION),
        http_status=status,
        raw=dict(obj),
    )


def _transport_signal(
    status: int,
    message: str,
    url: str,
    auth_label: str,
    raw: Dict[str, Any],
) -> ApiError:
    if status == 401:
        return ApiError(
            code=AUTH_FAILED,
            description=f"Authentication failed ({auth_label})",
            http_status=status,
            raw=raw,
        )
    if status == 404:
        return ApiError(
            code=ENDPOINT_NOT_FOUND,
            description=f"Endpoint not found: {url or 'unknown'}",
            http_status=status,
            raw=raw,
        )
    return ApiError(
        code=UNKNOWN_ERROR,
        description=message or DEFAULT_DESCRIPTION,
        http_status=status,
        raw=raw,
    )


def _unpack(raw_failure: Any) -> Tuple[Any, Optional[int], str, str]:
    """Split any failure shape into (body, status, message, url)."""
    if isinstance(raw_failure, TransportFailure):
        return (
            raw_failure.body,
            raw_failure.status_code,
            raw_failure.message,
            raw_failure.url,
        )
    if isinstance(raw_failure, BaseException):
        status = _as_status(getattr(raw_failure, "status_code", None))
        body = getattr(raw_failure, "body", None)
        return body, status, _text(raw_failure, type(raw_failure).__name__), ""
    if isinstance(raw_failure, dict):
        return raw_failure, _as_status(raw_failure.get("status")), "", ""
    if isinstance(raw_failure, (bytes, bytearray)):
        return raw_failure.decode("utf-8", errors="replace"), None, "", ""
    if isinstance(raw_failure, str):
        return raw_failure, None, "", ""
    return None, None, _text(raw_failure, ""), ""


def _normalize(raw_failure: Any, auth_label: str) -> ApiError:
    body, status, message, url = _unpack(raw_failure)
    http_status = status if status is not None else DEFAULT_STATUS

    # 1. Structured error fields already present
    if isinstance(body, dict) and "error" in body and "error_description" in body:
        return _from_error_object(body, http_status)

    if isinstance(body, str):
        text = body.strip()

        # 2. "<status> - <json-or-text>"
        match = _STATUS_PREFIX_RE.match(text)
        if match:
            http_status = int(match.group(1))
            remainder = match.group(2).strip()
            if _looks_like_object(remainder):
                parsed = _parse_object(remainder)
                if parsed is not None:
                    return _from_error_object(parsed, http_status)
            return ApiError(
                code=UNKNOWN_ERROR,
                description=remainder or DEFAULT_DESCRIPTION,
                http_status=http_status,
                raw={"raw_text": remainder},
            )

        parsed = _parse_object(text) if _looks_like_object(text) else None
        if parsed is not None:
            body = parsed
        elif text:
            return _transport_signal(
                http_status, text, url, auth_label, {"raw_text": text}
            )

    # 3. Plain JSON object without the numeric prefix
    if isinstance(body, dict):
        if "error" in body:
            return _from_error_object(body, http_status)
        return _transport_signal(http_status, message, url, auth_label, dict(body))

    # 4. Transport-level signals
    raw: Dict[str, Any] = {"message": message} if message else {}
    if url:
        raw["url"] = url
    return _transport_signal(http_status, message, url, auth_label, raw)


def normalize_error(raw_failure: Any, auth_label: str = "unknown") -> ApiError:
    """
    Convert any failure shape into one ApiError.

    Accepts a TransportFailure, a platform error dict, a "<status> - {json}"
    string, a plain-text body, or an exception. Never raises.
    """
    try:
        return _normalize(raw_failure, auth_label)
    except Exception as e:  # last resort: unexpected object types
        logger.warning(f"Could not normalize failure of type {type(raw_failure).__name__}: {e}")
        return ApiError(
            code=UNKNOWN_ERROR,
            description=DEFAULT_DESCRIPTION,
            http_status=DEFAULT_STATUS,
            raw={},
        )
