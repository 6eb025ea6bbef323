from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..constants import DEFAULT_HEADERS, IDENTITY_ENDPOINT, REQUEST_TIMEOUT, SESSION_HEADER
from ..errors import ApiError, ExhaustionError, NoCredentialError, NotAuthenticatedError, ValidationError
from ..message import M, emit, mask
from ..transport import ApiResponse, Transport
from .credentials import CredentialPool

if TYPE_CHECKING:
    from ..retry import RetryExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Account behind a validated credential."""

    credential: str
    credential_index: int
    user_id: str | None = None
    auth_provider: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, credential: str, credential_index: int) -> Identity:
        if not isinstance(payload, dict):
            raise ValidationError(f"Identity payload must be an object, got {type(payload).__name__}")
        user_id = payload.get("user_id")
        provider = payload.get("auth_provider")
        return cls(
            credential=credential,
            credential_index=credential_index,
            user_id=str(user_id) if user_id is not None else None,
            auth_provider=str(provider) if provider is not None else None,
            raw=payload,
        )


class AuthSession:
    """Tracks the logged-in credential and caches the identity it resolves to.

    The active credential follows pool rotations (rotation listener) and the
    cached identity is dropped whenever it changes.
    """

    def __init__(
        self,
        pool: CredentialPool,
        executor: RetryExecutor,
        transport: Transport,
        *,
        session_header: str = SESSION_HEADER,
        default_headers: dict[str, str] | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self._pool = pool
        self._executor = executor
        self._transport = transport
        self.session_header = session_header
        self.default_headers = dict(DEFAULT_HEADERS if default_headers is None else default_headers)
        self.timeout = timeout
        self._credential: str | None = None
        self._identity: Identity | None = None
        self._lock = threading.Lock()
        pool.add_rotation_listener(self._select)

    @property
    def credential(self) -> str | None:
        with self._lock:
            return self._credential

    @property
    def cached_identity(self) -> Identity | None:
        with self._lock:
            return self._identity

    def _select(self, credential: str | None) -> None:
        with self._lock:
            if credential != self._credential:
                self._identity = None
            self._credential = credential

    # ── headers ──────────────────────────────────────────────────

    def build_auth_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        credential = self.credential
        if not credential:
            raise NotAuthenticatedError("Not authenticated. Please login first.")
        return self._headers_for(credential, extra)

    def _headers_for(self, credential: str, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = dict(self.default_headers)
        if extra:
            headers.update(extra)
        headers[self.session_header] = credential
        return headers

    # ── login / identity ─────────────────────────────────────────

    def login(self, force_rotate: bool = False) -> str:
        """Select a credential and prove it against the identity endpoint.

        On failure with more than one credential, rotates and tries again,
        at most once around the pool. Each candidate is checked without
        executor-level rotation, so a full pass costs one identity request
        per credential (plus transient retries).
        """
        emit(M.ALGN, "Starting login with session token...")
        if force_rotate:
            self._select(self._pool.rotate())
        elif self.credential is None:
            self._pool.ensure_loaded()
            self._select(self._pool.active())

        extra_rotations = 0
        while True:
            credential = self.credential
            if not credential:
                emit(M.AERR, "No session token found. Add at least one token to the credential file.")
                raise NoCredentialError(
                    "No session token found. Please add session-token.key file with at least one token."
                )
            try:
                identity = self._lookup_identity("Token validation", rotate_on_auth=False)
            except ApiError as e:
                pool_size = self._pool.size
                if pool_size > 1 and extra_rotations < pool_size - 1:
                    extra_rotations += 1
                    emit(M.AERR, f"Token {mask(credential)} invalid ({e}), trying next token...")
                    self._select(self._pool.rotate())
                    continue
                emit(M.AERR, f"Login failed: {e}")
                self._select(None)
                if pool_size > 1 and e.is_auth_error:
                    raise ExhaustionError(f"Login failed: all {pool_size} credentials rejected", last_error=e) from e
                raise

            info = self._pool.info()
            emit(M.AOK_, f"Session token is valid! Account {info.current_index + 1}/{info.total}")
            logger.info(
                "Login successful user_id=%s provider=%s index=%d total=%d",
                identity.user_id,
                identity.auth_provider,
                info.current_index,
                info.total,
            )
            return identity.credential

    def get_identity(self, use_cache: bool = True) -> Identity:
        cached = self.cached_identity
        if use_cache and cached is not None:
            logger.debug("Returning identity from cache")
            return cached
        return self._lookup_identity("Get user info")

    def _lookup_identity(self, label: str, *, rotate_on_auth: bool = True) -> Identity:
        def fetch() -> tuple[str, ApiResponse]:
            headers = self.build_auth_headers()
            return headers[self.session_header], self._transport.request(
                "GET", IDENTITY_ENDPOINT, headers=headers, timeout=self.timeout
            )

        result = self._executor.execute(fetch, label, rotate_on_auth=rotate_on_auth)
        if isinstance(result, ApiResponse):
            raise ValidationError(f"{label}: identity response stream was cut off")
        credential, response = result
        identity = Identity.from_payload(response.json(), credential, self._pool.info().current_index)
        with self._lock:
            if self._credential == credential:
                self._identity = identity
        return identity

    # ── pool maintenance ─────────────────────────────────────────

    def verify_credential(self, credential: str) -> bool:
        """Check one specific credential; a rejection is final, not rotated around."""
        headers = self._headers_for(credential)

        def probe() -> ApiResponse:
            return self._transport.request("GET", IDENTITY_ENDPOINT, headers=headers, timeout=self.timeout)

        try:
            result = self._executor.execute(probe, "Token verification", rotate_on_auth=False)
        except ApiError as e:
            logger.info("Token verification failed for %s: %s", mask(credential), e)
            return False
        return isinstance(result, ApiResponse) and result.status == 200 and not result.stream_aborted

    def verify_and_prune(self) -> int:
        self._pool.ensure_loaded()
        return self._pool.verify_and_prune(self.verify_credential)
