"""Authenticated requests through the retry executor."""

from __future__ import annotations

import logging
from typing import Any

from .auth.session import AuthSession
from .constants import REQUEST_TIMEOUT
from .errors import ApiError, StreamAbortError
from .message import M, emit
from .retry import RetryExecutor
from .transport import ApiResponse, Transport

logger = logging.getLogger(__name__)


class ApiClient:
    def __init__(
        self,
        transport: Transport,
        executor: RetryExecutor,
        auth: AuthSession,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.transport = transport
        self.executor = executor
        self.auth = auth
        self.timeout = timeout

    def request(
        self,
        method: str,
        endpoint: str,
        payload: Any = None,
        headers: dict[str, str] | None = None,
        *,
        stream: bool = False,
        timeout: float | None = None,
    ) -> ApiResponse:
        """Send one request, rebuilding auth headers on every attempt.

        A stream abort comes back as ``ApiResponse.aborted()``; every other
        unrecovered failure is logged and re-raised.
        """
        effective_timeout = timeout or self.timeout

        def attempt() -> ApiResponse:
            return self.transport.request(
                method,
                endpoint,
                headers=self.auth.build_auth_headers(headers),
                payload=payload,
                timeout=effective_timeout,
                stream=stream,
            )

        try:
            result = self.executor.execute(attempt, f"{method} {endpoint}")
        except ApiError as e:
            emit(M.SERR, f"API request failed ({method} {endpoint}): {e}")
            logger.warning("API request failed (%s %s)", method, endpoint, exc_info=True)
            raise
        return result  # type: ignore[return-value]

    def get_json(self, endpoint: str) -> Any:
        response = self.request("GET", endpoint)
        if response.stream_aborted:
            raise StreamAbortError(f"GET {endpoint}: response stream was cut off")
        return response.json()
