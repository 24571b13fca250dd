"""
JSON API client - Shared httpx plumbing for the external capability adapters.

Every outbound call goes through ApiClient.request, which classifies
failures into the domain's adapter error hierarchy:

- httpx timeout                  -> AdapterTimeout
- connection / transport failure -> TransientAdapterError
- HTTP 429 or 5xx                -> TransientAdapterError
- any other HTTP 4xx             -> NonRetryableAdapterError

Callers may pass expected status codes (e.g. 404 on a lookup) which are
returned to them instead of being raised.

ApiClient.parse turns a success body that cannot be read into
NonRetryableAdapterError, so a malformed payload never escapes as a
KeyError or JSON decode error.
"""

import logging
from collections.abc import Callable, Collection
from decimal import InvalidOperation
from typing import Any, TypeVar

import httpx

from src.domain.exceptions import (
    AdapterTimeout,
    NonRetryableAdapterError,
    TransientAdapterError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Raised while reading a 2xx body that lacks the promised fields
MALFORMED_BODY_ERRORS = (KeyError, TypeError, ValueError, AttributeError, InvalidOperation)


class ApiClient:
    """Thin synchronous wrapper around httpx.Client with bearer auth."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        name: str = "api",
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Root URL of the external API
            api_key: Bearer token; omitted from requests when empty
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject httpx.MockTransport)
            name: Label used in logs and error messages
        """
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.name = name
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        expected: Collection[int] = (),
    ) -> httpx.Response:
        """
        Send a request and classify the outcome.

        Args:
            method: HTTP method
            path: Path relative to base_url
            json: Optional JSON body
            idempotency_key: Sent as the Idempotency-Key header when given
            expected: Non-2xx status codes handed back to the caller

        Returns:
            The response (2xx or one of the expected codes)

        Raises:
            AdapterTimeout: The request timed out
            TransientAdapterError: Transport failure, 429 or 5xx
            NonRetryableAdapterError: Any other 4xx
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise AdapterTimeout(f"{self.name}: {method} {path} timed out") from e
        except httpx.TransportError as e:
            raise TransientAdapterError(f"{self.name}: {method} {path} failed: {e}") from e

        status = response.status_code
        if status in expected or response.is_success:
            return response

        detail = _error_detail(response)
        if status == 429 or status >= 500:
            logger.warning("%s: %s %s returned %d", self.name, method, path, status)
            raise TransientAdapterError(f"{self.name}: HTTP {status} {detail}".rstrip())
        raise NonRetryableAdapterError(f"{self.name}: HTTP {status} {detail}".rstrip())

    def parse(self, response: httpx.Response, build: Callable[[Any], T]) -> T:
        """
        Build a result from a JSON response body.

        Raises:
            NonRetryableAdapterError: The body is not JSON or lacks required fields
        """
        try:
            return build(response.json())
        except MALFORMED_BODY_ERRORS as e:
            logger.warning("%s: malformed response body: %r", self.name, e)
            raise NonRetryableAdapterError(f"{self.name}: malformed response body ({e!r})") from e

    def close(self) -> None:
        self._client.close()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or "")
    return ""
