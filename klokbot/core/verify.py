"""Strategies for deciding whether an ambiguous chat request took effect."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from .constants import VERIFY_SETTLE_DELAY
from .message import M, emit
from .points import UsagePointsGauge

logger = logging.getLogger(__name__)


class OutcomeResolver(Protocol):
    def resolve(self, before_points: int) -> bool: ...


class StreamOutcomeResolver:
    """Proof of effect from the usage counter: any increase counts as delivered.

    ``resolve`` never raises; it already runs on a degraded path.
    """

    def __init__(
        self,
        gauge: UsagePointsGauge,
        settle_delay: float = VERIFY_SETTLE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._gauge = gauge
        self.settle_delay = settle_delay
        self._sleep = sleep

    def resolve(self, before_points: int) -> bool:
        try:
            emit(M.VWAT, f"Waiting {self.settle_delay:g}s before checking points...")
            self._sleep(self.settle_delay)
            after_points = self._gauge.fetch_inference_points()
        except Exception as e:
            emit(M.VFAL, f"Error verifying points: {e}")
            logger.warning("Points verification failed", exc_info=True)
            return False

        increased = after_points > before_points
        emit(
            M.VPAS if increased else M.VFAL,
            f"Point verification: {'Points increased' if increased else 'No change in points'} "
            f"(before={before_points} after={after_points} diff={after_points - before_points})",
        )
        return increased


class DisabledOutcomeResolver:
    """For environments without the points side-channel: nothing is ever proven."""

    def resolve(self, before_points: int) -> bool:
        emit(M.VFAL, "Outcome verification disabled; treating request as not delivered")
        return False
