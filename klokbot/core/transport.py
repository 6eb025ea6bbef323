"""HTTP transport over requests with structural failure classification.

Every failure leaves this module as an ApiError subclass chosen at the point
it happened: before a response (network), from the status line (auth, server,
permanent) or while reading a streamed body (stream abort).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from .constants import CONNECT_TIMEOUT, REQUEST_TIMEOUT
from .errors import (
    ApiError,
    AuthorizationError,
    StreamAbortError,
    TransientNetworkError,
    TransientServerError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_ERROR_BODY_CHARS = 200


@dataclass
class ApiResponse:
    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    stream_aborted: bool = False

    @classmethod
    def aborted(cls) -> ApiResponse:
        """Degenerate result for a stream cut off mid-body: status 200, empty body."""
        return cls(status=200, body="", stream_aborted=True)

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, ValueError) as e:
            raise ValidationError(
                f"Expected JSON body (HTTP {self.status}): {self.body[:_ERROR_BODY_CHARS]!r}",
                status_code=self.status,
            ) from e


def _error_detail(response: requests.Response) -> str:
    """Best-effort message from a structured JSON error body."""
    text = response.text or ""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text[:_ERROR_BODY_CHARS]
    if isinstance(data, dict):
        for key in ("detail", "error", "message"):
            if data.get(key):
                return str(data[key])[:_ERROR_BODY_CHARS]
    return text[:_ERROR_BODY_CHARS]


class Transport:
    def __init__(
        self,
        base_url: str,
        connect_timeout: int = CONNECT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self._session = session or requests.Session()

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        payload: Any = None,
        timeout: float = REQUEST_TIMEOUT,
        stream: bool = False,
    ) -> ApiResponse:
        url = self.url_for(path)
        label = f"{method} {path}"
        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                json=payload,
                timeout=(self.connect_timeout, timeout),
                stream=stream,
            )
        except requests.exceptions.ConnectTimeout as e:
            raise TransientNetworkError(f"Connection timeout ({self.connect_timeout}s) for {label}") from e
        except requests.exceptions.ReadTimeout as e:
            raise TransientNetworkError(f"Read timeout ({timeout}s) for {label}") from e
        except requests.exceptions.ConnectionError as e:
            raise TransientNetworkError(f"Connection error for {label} (server unreachable): {e}") from e
        except requests.exceptions.Timeout as e:
            raise TransientNetworkError(f"Timeout for {label}") from e
        except requests.exceptions.RequestException as e:
            raise ApiError(f"Request failed for {label}: {e}") from e

        try:
            status = response.status_code
            if status in (401, 403):
                raise AuthorizationError(
                    f"Authorization failed for {label} (HTTP {status}): {_error_detail(response)}",
                    status_code=status,
                )
            if status >= 500:
                raise TransientServerError(f"Server error {status} on {label}", status_code=status)
            if status >= 400:
                raise ApiError(
                    f"HTTP {status} from {label}: {_error_detail(response)}",
                    status_code=status,
                )
            body = self._read_body(response, label) if stream else response.text
            return ApiResponse(status=status, body=body, headers=dict(response.headers))
        finally:
            response.close()

    @staticmethod
    def _read_body(response: requests.Response, label: str) -> str:
        chunks: list[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    chunks.append(chunk)
        except (requests.exceptions.ChunkedEncodingError, requests.exceptions.ConnectionError) as e:
            received = sum(len(c) for c in chunks)
            logger.debug("Stream for %s aborted after %d bytes", label, received)
            raise StreamAbortError(
                f"Response stream aborted for {label} after {received} bytes: {e}",
                status_code=response.status_code,
            ) from e
        return b"".join(chunks).decode("utf-8", errors="replace")
