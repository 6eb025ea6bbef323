"""Shared constants -- imported by retry.py, verify.py, chat.py and config.py.

This module has NO imports from the klokbot package so that config defaults
and module-level fallbacks stay in one place.
"""

from __future__ import annotations

# ── Retry / backoff ──────────────────────────────────────────────────────────

MAX_RETRIES = 5
RETRY_BASE_DELAY = 2.0  # seconds before the first retry
RETRY_MULTIPLIER = 1.5  # 2.0s, 3.0s, 4.5s, 6.75s, 10.1s
RETRY_MAX_DELAY = 3600.0  # backoff ceiling, far above any default delay

# ── Timeouts (seconds) ───────────────────────────────────────────────────────

CONNECT_TIMEOUT = 10
REQUEST_TIMEOUT = 10
CHAT_TIMEOUT = 30

# ── Stream outcome verification ──────────────────────────────────────────────

VERIFY_SETTLE_DELAY = 3.0  # let the server-side effect land before sampling

# ── Remote service ───────────────────────────────────────────────────────────

DEFAULT_BASE_URL = "https://api1-pp.klokapp.ai/v1"
SESSION_HEADER = "X-Session-Token"
DEFAULT_TOKEN_FILE = "session-token.key"
DEFAULT_LANGUAGE = "english"

IDENTITY_ENDPOINT = "/me"
CHAT_ENDPOINT = "/chat"
POINTS_ENDPOINT = "/points"

DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Origin": "https://klokapp.ai",
    "Referer": "https://klokapp.ai/",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
}

# ── Chat stream parsing ──────────────────────────────────────────────────────

STREAM_DATA_PREFIX = "data:"
RAW_PREVIEW_CHARS = 500

# Assistant content substituted when no real reply can be extracted.
PLACEHOLDER_EMPTY_RESPONSE = "Response received (streaming responses not fully implemented)"
PLACEHOLDER_UNINTERPRETED = "[Response received but could not be parsed]"
PLACEHOLDER_PARSE_FAILURE = "[Response could not be parsed]"
PLACEHOLDER_VERIFIED_ABORT = "[Response received but stream was aborted. Chat verified through point increase]"
