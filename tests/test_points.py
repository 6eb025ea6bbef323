"""Tests for klokbot.core.points and klokbot.core.verify."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from klokbot.core.errors import TransientNetworkError, ValidationError
from klokbot.core.points import UsagePointsGauge
from klokbot.core.verify import DisabledOutcomeResolver, StreamOutcomeResolver


def _gauge(payload=None, exc: Exception | None = None) -> tuple[UsagePointsGauge, MagicMock]:
    api = MagicMock()
    if exc is not None:
        api.get_json.side_effect = exc
    else:
        api.get_json.return_value = payload
    return UsagePointsGauge(api), api


# ── UsagePointsGauge ────────────────────────────────────────────────────


def test_fetch_inference_points() -> None:
    gauge, api = _gauge({"points": {"inference": 120, "referral": 5}, "total_points": 125})

    assert gauge.fetch_inference_points() == 120
    api.get_json.assert_called_once_with("/points")


def test_fetch_tolerates_extra_fields() -> None:
    gauge, _ = _gauge({"points": {"inference": 3, "bonus": 1}, "rank": 9})
    assert gauge.fetch_inference_points() == 3


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"points": {}},
        {"points": {"inference": "lots"}},
        {"points": 12},
        ["points"],
    ],
)
def test_fetch_rejects_unexpected_shape(payload) -> None:
    gauge, _ = _gauge(payload)
    with pytest.raises(ValidationError):
        gauge.fetch_inference_points()


def test_fetch_propagates_api_failure() -> None:
    gauge, _ = _gauge(exc=TransientNetworkError("down"))
    with pytest.raises(TransientNetworkError):
        gauge.fetch_inference_points()


def test_snapshot() -> None:
    gauge, _ = _gauge({"points": {"inference": 42}})
    snap = gauge.snapshot()
    assert snap.value == 42
    assert snap.sampled_at.tzinfo is not None


# ── StreamOutcomeResolver ───────────────────────────────────────────────


@pytest.mark.parametrize(
    ("before", "after", "expected"),
    [
        (10, 11, True),
        (10, 250, True),
        (10, 10, False),
        (10, 9, False),
    ],
)
def test_resolve_true_only_on_increase(before: int, after: int, expected: bool) -> None:
    gauge = MagicMock()
    gauge.fetch_inference_points.return_value = after
    sleep = MagicMock()

    assert StreamOutcomeResolver(gauge, sleep=sleep).resolve(before) is expected


def test_resolve_waits_settle_delay_before_sampling() -> None:
    calls: list[str] = []
    gauge = MagicMock()
    gauge.fetch_inference_points.side_effect = lambda: calls.append("fetch") or 5
    sleep = MagicMock(side_effect=lambda s: calls.append(f"sleep {s}"))

    StreamOutcomeResolver(gauge, settle_delay=3.0, sleep=sleep).resolve(1)

    assert calls == ["sleep 3.0", "fetch"]


@pytest.mark.parametrize("exc", [TransientNetworkError("down"), ValidationError("shape"), RuntimeError("bug")])
def test_resolve_never_raises(exc: Exception) -> None:
    gauge = MagicMock()
    gauge.fetch_inference_points.side_effect = exc

    assert StreamOutcomeResolver(gauge, sleep=MagicMock()).resolve(1) is False


def test_disabled_resolver_never_proves_delivery() -> None:
    assert DisabledOutcomeResolver().resolve(0) is False
