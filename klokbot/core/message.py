import threading
from datetime import datetime
from enum import StrEnum

from .event_bus import K_BLOCK_END, K_BLOCK_LINE, K_BLOCK_START, K_MSG, Event, get_bus


class M(StrEnum):
    # ── Credentials ──
    CLOD = "CLOD"  # credential pool loaded (count)
    CROT = "CROT"  # credential rotated (index/total)
    CVER = "CVER"  # credential verification result
    CPRN = "CPRN"  # credential pool pruned / persisted

    # ── Authentication ──
    ALGN = "ALGN"  # login attempt
    AOK_ = "AOK_"  # login / identity lookup succeeded
    AERR = "AERR"  # authentication failure

    # ── Retry executor ──
    RRTY = "RRTY"  # transient failure, backoff retry scheduled
    RROT = "RROT"  # authorization failure, rotating credential
    REXH = "REXH"  # retry budget / credential pool exhausted
    RABT = "RABT"  # response stream aborted, verdict deferred

    # ── Usage points / verification ──
    PPTS = "PPTS"  # points sample
    VWAT = "VWAT"  # waiting for server-side effect to settle
    VPAS = "VPAS"  # verified: points increased
    VFAL = "VFAL"  # not verified

    # ── Chat ──
    CMDL = "CMDL"  # model selected
    CTHR = "CTHR"  # thread created
    CUSR = "CUSR"  # user message appended
    CREQ = "CREQ"  # chat request metadata
    CAST = "CAST"  # assistant message appended
    CERR = "CERR"  # chat delivery failed

    # ── System ──
    SINF = "SINF"  # system info
    SWRN = "SWRN"  # system warning
    SERR = "SERR"  # system error


_console = True
_print_lock = threading.Lock()


def set_console_output(value: bool) -> None:
    """Turn the stdout echo on or off. Bus publishing is unaffected."""
    global _console
    _console = value


def _ts() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _print(line: str) -> None:
    with _print_lock:
        print(line, flush=True)


def emit(code: M, message: str, *, truncate: int = 0, label: str = "") -> None:
    """Publish to the event bus when one is running, and echo to stdout unless muted."""
    if truncate > 0 and len(message) > truncate:
        message = message[:truncate] + f"... [{len(message) - truncate} chars]"
    bus = get_bus()
    if bus is not None:
        bus.publish(Event(kind=K_MSG, code=code.value, ts=_ts(), msg=message, label=label))
    if _console:
        _print(f"{{{code.value}}}{_ts()} {message}")


def emit_block(code: M, label: str, content: str, *, max_lines: int = 0) -> None:
    lines = content.splitlines()
    if max_lines > 0 and len(lines) > max_lines:
        lines = lines[:max_lines] + [f"... [{len(lines) - max_lines} more lines]"]
    bus = get_bus()
    if bus is not None:
        ts = _ts()
        cv = code.value
        bus.publish(Event(kind=K_BLOCK_START, code=cv, ts=ts, label=label))
        for line in lines:
            bus.publish(Event(kind=K_BLOCK_LINE, code=cv, ts=ts, msg=line))
        bus.publish(Event(kind=K_BLOCK_END, code=cv, ts=ts))
    if not _console:
        return
    tag = f"{{{code.value}}}"
    _print(f"{tag}{_ts()} ┌── {label}")
    for line in lines:
        _print(f"{tag}{_ts()}  │ {line}")
    _print(f"{tag}{_ts()} └──")


def preview(text: str, limit: int = 100) -> str:
    """Shorten text for telemetry, marking the cut."""
    return text[:limit] + ("..." if len(text) > limit else "")


def mask(credential: str, keep: int = 10) -> str:
    """Never log a full credential."""
    return credential[:keep] + "..."
