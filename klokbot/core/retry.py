"""Bounded retry around a single remote call.

Each failed attempt lands in exactly one bucket, checked in this order:

  auth          -- rotate to the next credential and re-run immediately
                   (backoff counter reset, at most one pass over the pool)
  transient     -- exponential backoff, up to ``max_retries`` retries
  stream abort  -- no retry; hand back ApiResponse.aborted() so the caller
                   can decide whether the request took effect
  anything else -- propagates unchanged
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import timedelta
from typing import TypeVar

from resilient_circuit import ExponentialDelay

from .auth.credentials import CredentialPool
from .config import RetryConfig
from .constants import MAX_RETRIES, RETRY_BASE_DELAY, RETRY_MAX_DELAY, RETRY_MULTIPLIER
from .errors import (
    AuthorizationError,
    ExhaustionError,
    StreamAbortError,
    TransientNetworkError,
    TransientServerError,
)
from .message import M, emit
from .transport import ApiResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    def __init__(
        self,
        pool: CredentialPool,
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_BASE_DELAY,
        multiplier: float = RETRY_MULTIPLIER,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._pool = pool
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.multiplier = multiplier
        self._sleep = sleep
        # No jitter; the cap sits above the largest delay the retry budget can reach.
        self._backoff = ExponentialDelay(
            min_delay=timedelta(seconds=base_delay),
            max_delay=timedelta(seconds=max(RETRY_MAX_DELAY, base_delay * multiplier ** (max_retries + 1))),
            factor=multiplier,
        )

    @classmethod
    def from_config(
        cls,
        pool: CredentialPool,
        config: RetryConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> RetryExecutor:
        return cls(
            pool,
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt counts from 0)."""
        return self._backoff.for_attempt(attempt + 1)

    def execute(
        self,
        call: Callable[[], T],
        label: str,
        *,
        rotate_on_auth: bool = True,
    ) -> T | ApiResponse:
        """Run ``call`` until it succeeds or its failure can't be recovered here.

        ``call`` must read the active credential on every invocation, since a
        rotation between attempts is only visible through the pool.
        Pass ``rotate_on_auth=False`` when the call pins its own credential.
        """
        attempt = 0
        rotations = 0
        current_label = label

        while True:
            try:
                return call()
            except AuthorizationError as e:
                pool_size = self._pool.size
                if not rotate_on_auth or pool_size <= 1:
                    raise
                if rotations >= pool_size - 1:
                    emit(M.REXH, f"{label}: every credential in the pool was rejected ({pool_size} tried)")
                    raise ExhaustionError(
                        f"{label} failed: all {pool_size} credentials rejected",
                        last_error=e,
                    ) from e
                rotations += 1
                attempt = 0
                previous = self._pool.info().current_index
                emit(
                    M.RROT,
                    f"{current_label}: auth error with credential {previous + 1}, switching to next ({e})",
                )
                self._pool.rotate()
                current_label = f"{label} (with new token)"
            except (TransientNetworkError, TransientServerError) as e:
                if attempt >= self.max_retries:
                    emit(M.REXH, f"{current_label} failed after {self.max_retries} retries: {e}")
                    raise ExhaustionError(
                        f"{current_label} failed after {self.max_retries} retries: {e}",
                        last_error=e,
                    ) from e
                delay = self.delay_for(attempt)
                attempt += 1
                emit(
                    M.RRTY,
                    f"{current_label} failed ({e}). Retrying ({attempt}/{self.max_retries}) in {delay:.2f}s...",
                )
                self._sleep(delay)
            except StreamAbortError as e:
                emit(M.RABT, f"{current_label}: stream aborted, outcome needs verification ({e})")
                logger.info("Stream aborted during %s", current_label, exc_info=True)
                return ApiResponse.aborted()
