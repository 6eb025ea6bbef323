"""Usage points counter, read as evidence that the server did something."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .api import ApiClient
from .constants import POINTS_ENDPOINT
from .errors import ValidationError
from .message import M, emit

logger = logging.getLogger(__name__)


class PointsBreakdown(BaseModel):
    model_config = ConfigDict(extra="allow")

    inference: int
    referral: int = 0


class PointsPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    points: PointsBreakdown
    total_points: int | None = None


@dataclass(frozen=True)
class UsagePointsSnapshot:
    value: int
    sampled_at: datetime


class UsagePointsGauge:
    """Reads the active account's inference points. No caching."""

    def __init__(self, api: ApiClient, endpoint: str = POINTS_ENDPOINT):
        self._api = api
        self.endpoint = endpoint

    def fetch_inference_points(self) -> int:
        data = self._api.get_json(self.endpoint)
        try:
            payload = PointsPayload.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Unexpected points payload: %r", data)
            raise ValidationError(f"Unexpected points payload from {self.endpoint}: {e}") from e
        value = payload.points.inference
        emit(M.PPTS, f"Inference points: {value}")
        return value

    def snapshot(self) -> UsagePointsSnapshot:
        return UsagePointsSnapshot(value=self.fetch_inference_points(), sampled_at=datetime.now(timezone.utc))
