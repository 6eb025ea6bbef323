"""Tests for klokbot.core.message — emit routing, previews and masking."""

from __future__ import annotations

import pytest

from klokbot.core import event_bus, message
from klokbot.core.event_bus import K_BLOCK_END, K_BLOCK_LINE, K_BLOCK_START, K_MSG
from klokbot.core.message import M, emit, emit_block, mask, preview


@pytest.fixture(autouse=True)
def _reset():
    event_bus.shutdown_bus()
    message.set_console_output(True)
    yield
    event_bus.shutdown_bus()
    message.set_console_output(True)


def test_emit_prints_without_bus(capsys) -> None:
    emit(M.CROT, "Rotated to token 2/3")
    out = capsys.readouterr().out
    assert out.startswith("{CROT}")
    assert out.rstrip().endswith("Rotated to token 2/3")


def test_emit_truncates(capsys) -> None:
    emit(M.SINF, "x" * 30, truncate=10)
    assert "xxxxxxxxxx... [20 chars]" in capsys.readouterr().out


def test_emit_console_muted_is_silent(capsys) -> None:
    message.set_console_output(False)
    emit(M.SERR, "boom")
    emit_block(M.SINF, "Account", "a")
    assert capsys.readouterr().out == ""


def test_emit_publishes_to_bus_and_echoes(capsys) -> None:
    bus = event_bus.init_bus()
    q = bus.subscribe()

    emit(M.RRTY, "Retrying in 2.0s", label="GET /me")

    evt = q.get_nowait()
    assert (evt.kind, evt.code, evt.msg, evt.label) == (K_MSG, "RRTY", "Retrying in 2.0s", "GET /me")
    assert "Retrying in 2.0s" in capsys.readouterr().out


def test_muted_console_still_publishes(capsys) -> None:
    q = event_bus.init_bus().subscribe()
    message.set_console_output(False)

    emit(M.SWRN, "recorded only")

    assert q.get_nowait().msg == "recorded only"
    assert capsys.readouterr().out == ""


def test_emit_block_events() -> None:
    bus = event_bus.init_bus()
    q = bus.subscribe()

    emit_block(M.CAST, "[model]", "line one\nline two\nline three", max_lines=2)

    kinds = []
    while not q.empty():
        kinds.append(q.get_nowait())
    assert [e.kind for e in kinds] == [K_BLOCK_START, K_BLOCK_LINE, K_BLOCK_LINE, K_BLOCK_LINE, K_BLOCK_END]
    assert kinds[0].label == "[model]"
    assert kinds[3].msg == "... [1 more lines]"


def test_emit_block_prints_without_bus(capsys) -> None:
    emit_block(M.SINF, "Account", "a\nb")
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 4
    assert lines[0].endswith("┌── Account")


def test_preview() -> None:
    assert preview("short") == "short"
    assert preview("a" * 120) == "a" * 100 + "..."


def test_mask_never_shows_full_credential() -> None:
    token = "abcdefghijklmnopqrstuvwxyz"
    masked = mask(token)
    assert masked == "abcdefghij..."
    assert token not in masked


def test_system_codes() -> None:
    assert sorted(c.value for c in M if c.value.startswith("S")) == ["SERR", "SINF", "SWRN"]
