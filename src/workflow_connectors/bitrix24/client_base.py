from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


class APIClientError(RuntimeError):
    """Base error for transport failures."""


class APIClientTimeout(APIClientError):
    """Raised when request times out."""


class APIClientHTTPError(APIClientError):
    """Raised for non-success HTTP responses."""

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class BaseAPIClient:
    """
    Thin HTTP transport shared by the request executor and the token refresher.

    Features:
    - Persistent session
    - JSON Accept header and User-Agent
    - Connection-level retries only (status codes are never retried here;
      the executor owns the single refresh-and-retry cycle)
    - Configurable timeout
    - Callers always pass absolute URLs
    """

    DEFAULT_TIMEOUT = 15  # seconds
    DEFAULT_RETRIES = 0
    USER_AGENT = "WorkflowConnectors-Bitrix24/1.0"

    def __init__(
        self,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        user_agent: Optional[str] = None,
    ) -> None:

        self.timeout = timeout or self.DEFAULT_TIMEOUT

        self.session = requests.Session()
        self.session.headers.update(
            {
                "User-Agent": user_agent or self.USER_AGENT,
                "Accept": "application/json",
            }
        )

        retry_strategy = Retry(
            total=retries if retries is not None else self.DEFAULT_RETRIES,
            status_forcelist=[],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    # ---------------------------------------------------
    # Core request methods
    # ---------------------------------------------------
    def send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        Send one request and return the raw response, whatever its status.
        Only transport failures raise.
        """

        try:
            return self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise APIClientTimeout(
                f"Request timed out calling {url}"
            ) from e
        except requests.RequestException as e:
            raise APIClientError(
                f"Request failed calling {url}: {e}"
            ) from e

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send GET request and return parsed JSON.
        Raises clean, structured errors.
        """

        try:
            response = self.session.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise APIClientTimeout(
                f"Request timed out calling {url}"
            ) from e
        except requests.RequestException as e:
            raise APIClientError(
                f"Request failed calling {url}: {e}"
            ) from e

        if response.status_code >= 400:
            raise APIClientHTTPError(
                f"HTTP {response.status_code} returned from {url}",
                status_code=response.status_code,
                body=_safe_body(response),
            )

        try:
            return response.json()
        except ValueError as e:
            raise APIClientError(
                f"Invalid JSON returned from {url}"
            ) from e

    def get_bytes(self, url: str) -> bytes:
        """GET a URL and return the raw body."""
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            raise APIClientTimeout(f"Request timed out calling {url}") from e
        except requests.RequestException as e:
            raise APIClientError(f"Request failed calling {url}: {e}") from e

        if response.status_code >= 400:
            raise APIClientHTTPError(
                f"HTTP {response.status_code} returned from {url}",
                status_code=response.status_code,
            )
        return response.content

    def close(self) -> None:
        self.session.close()


def _safe_body(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return getattr(response, "text", None)
