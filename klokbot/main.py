import json
import logging

import typer

from .core.config import ensure_global_config, load_global_config
from .core.context import KlokContext
from .core.errors import KlokError
from .core.event_bus import JsonLinesSink, init_bus, shutdown_bus
from .core.message import M, emit, emit_block, set_console_output

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

app = typer.Typer()

_token_file: str | None = None


@app.callback()
def _global_options(
    ctx: typer.Context,
    token_file: str = typer.Option(
        "",
        "--token-file",
        "-t",
        help="Credential file, one session token per line",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    events: str = typer.Option(
        "",
        "--events",
        help="Append every telemetry event to this file as JSON lines",
    ),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="No telemetry on stdout"),
) -> None:
    global _token_file
    _token_file = token_file or None
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    set_console_output(not quiet)
    if events:
        sink = JsonLinesSink(init_bus(), events).start()
        ctx.call_on_close(lambda: _stop_events(sink))
    ensure_global_config()


def _stop_events(sink: JsonLinesSink) -> None:
    shutdown_bus()
    sink.close()


def _context() -> KlokContext:
    return KlokContext.build(load_global_config(), token_file=_token_file)


def _fail(exc: KlokError) -> None:
    emit(M.SERR, str(exc))
    raise typer.Exit(1)


# ── CLI Commands ─────────────────────────────────────────────────────────


@app.command("verify-tokens")
def verify_tokens() -> None:
    """Check every stored token and drop the ones the service rejects."""
    ctx = _context()
    valid = ctx.auth.verify_and_prune()
    if valid == 0:
        emit(M.SERR, f"No valid tokens left in {ctx.source.path}")
        raise typer.Exit(1)


@app.command()
def whoami() -> None:
    ctx = _context()
    try:
        ctx.auth.login()
        identity = ctx.auth.get_identity()
    except KlokError as exc:
        _fail(exc)
        return
    emit_block(M.SINF, "Account", json.dumps(identity.raw, indent=2, sort_keys=True))


@app.command()
def points() -> None:
    ctx = _context()
    try:
        ctx.auth.login()
        value = ctx.gauge.fetch_inference_points()
    except KlokError as exc:
        _fail(exc)
        return
    emit(M.SINF, f"Inference points: {value}")


@app.command()
def chat(
    message: list[str] = typer.Argument(..., help="Message to send; repeat for several turns"),
    model: str = typer.Option("", "--model", "-m", help="Target model (default: chat.default_model)"),
) -> None:
    """Send one or more messages in a fresh thread, waiting for each to settle."""
    ctx = _context()
    if model:
        ctx.chat.set_selected_model(model)
    try:
        ctx.auth.login()
        ctx.chat.create_thread()
        for content in message:
            reply = ctx.chat.send(content)
            emit_block(M.CAST, f"[{ctx.chat.selected_model}]", reply)
    except KlokError as exc:
        _fail(exc)


if __name__ == "__main__":
    app()
