"""Chat thread state and message delivery.

A send moves the session through:

    UNINITIALIZED -> THREAD_ACTIVE -> SENDING -> SETTLED | UNVERIFIED

SETTLED means the service answered (even if the answer was unreadable).
UNVERIFIED means the outcome was ambiguous and was proven delivered by an
OutcomeResolver. A send that ends in ChatDeliveryFailedError puts the
session back in THREAD_ACTIVE; the user message stays in the thread.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from .api import ApiClient
from .constants import (
    CHAT_ENDPOINT,
    CHAT_TIMEOUT,
    DEFAULT_LANGUAGE,
    PLACEHOLDER_EMPTY_RESPONSE,
    PLACEHOLDER_PARSE_FAILURE,
    PLACEHOLDER_UNINTERPRETED,
    PLACEHOLDER_VERIFIED_ABORT,
    RAW_PREVIEW_CHARS,
    STREAM_DATA_PREFIX,
)
from .errors import (
    ApiError,
    ChatDeliveryFailedError,
    ExhaustionError,
    NoModelSelectedError,
    NotAuthenticatedError,
)
from .message import M, emit, preview
from .points import UsagePointsGauge
from .transport import ApiResponse
from .verify import OutcomeResolver

logger = logging.getLogger(__name__)


class ChatState(StrEnum):
    UNINITIALIZED = "uninitialized"
    THREAD_ACTIVE = "thread_active"
    SENDING = "sending"
    SETTLED = "settled"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class Message:
    role: str  # "user" | "assistant"
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class Thread:
    id: str
    title: str = ""
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls) -> Thread:
        return cls(id=str(uuid.uuid4()))


def parse_stream_body(body: str) -> str:
    """Extract the assistant reply from a ``data:``-prefixed pseudo-stream.

    The first payload with non-empty ``content`` wins; later lines are not
    looked at. Bodies that yield no reply map to placeholder text.
    """
    reply = ""
    try:
        for line in body.split("\n"):
            if not line.startswith(STREAM_DATA_PREFIX):
                continue
            event = json.loads(line[len(STREAM_DATA_PREFIX) :].strip())
            if isinstance(event, dict) and event.get("content"):
                reply = str(event["content"])
                break
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("Error parsing streaming response: %s; body starts %r", e, body[:RAW_PREVIEW_CHARS])
        return PLACEHOLDER_PARSE_FAILURE

    if reply:
        return reply
    if body:
        return PLACEHOLDER_UNINTERPRETED
    return PLACEHOLDER_EMPTY_RESPONSE


class ChatSession:
    """Owns the live thread and delivers one message at a time."""

    def __init__(
        self,
        api: ApiClient,
        gauge: UsagePointsGauge,
        resolver: OutcomeResolver,
        *,
        language: str = DEFAULT_LANGUAGE,
        timeout: float = CHAT_TIMEOUT,
        model: str | None = None,
    ):
        self._api = api
        self._gauge = gauge
        self._resolver = resolver
        self.language = language
        self.timeout = timeout
        self._model = model
        self._thread: Thread | None = None
        self._state = ChatState.UNINITIALIZED
        self._send_lock = threading.Lock()

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def selected_model(self) -> str | None:
        return self._model

    @property
    def current_thread(self) -> Thread | None:
        return self._thread

    def set_selected_model(self, model: str) -> None:
        self._model = model
        emit(M.CMDL, f"Selected model: {model}")

    def history(self) -> list[Message]:
        return list(self._thread.messages) if self._thread else []

    def create_thread(self) -> Thread:
        self._thread = Thread.create()
        self._state = ChatState.THREAD_ACTIVE
        emit(M.CTHR, f"New chat thread created: {self._thread.id}")
        return self._thread

    def build_payload(self) -> dict[str, Any]:
        thread = self._thread
        if thread is None:
            raise RuntimeError("build_payload() called without an active thread")
        return {
            "id": thread.id,
            "title": thread.title or "",
            "language": self.language,
            "messages": [m.to_payload() for m in thread.messages],
            "model": self._model,
            "sources": [],
        }

    def send(self, content: str) -> str:
        """Deliver ``content`` and return the assistant reply.

        The user message is part of the thread before anything is sent,
        whatever the outcome.
        """
        with self._send_lock:
            model = self._model
            if not model:
                emit(M.CERR, "Chat attempt failed - no model selected")
                raise NoModelSelectedError("No model selected. Please select a model first.")
            if self._thread is None:
                self.create_thread()
            thread = self._thread
            assert thread is not None

            before_points = self._sample_points()
            thread.messages.append(Message(role="user", content=content))
            emit(M.CUSR, preview(content), label=thread.id)

            payload = self.build_payload()
            self._state = ChatState.SENDING
            emit(
                M.CREQ,
                f"Sending chat message to {model} thread={thread.id} length={len(content)}",
            )

            aborted = False
            cause: ApiError | None = None
            try:
                response = self._api.request(
                    "POST",
                    CHAT_ENDPOINT,
                    payload,
                    {"Content-Type": "application/json"},
                    stream=True,
                    timeout=self.timeout,
                )
                aborted = response.stream_aborted
            except ExhaustionError as e:
                if e.last_error is not None and e.last_error.is_auth_error:
                    emit(M.CERR, f"Error sending chat message: {e}")
                    self._state = ChatState.THREAD_ACTIVE
                    raise ChatDeliveryFailedError(f"Chat failed: {e}") from e
                emit(M.SWRN, f"All retries failed, will verify with points: {e}")
                response = ApiResponse(status=0)
                aborted = True
                cause = e
            except (ApiError, NotAuthenticatedError) as e:
                emit(M.CERR, f"Error sending chat message: {e}")
                self._state = ChatState.THREAD_ACTIVE
                raise ChatDeliveryFailedError(f"Chat failed: {e}") from e

            if aborted:
                self._state = ChatState.UNVERIFIED
                try:
                    reply = self._resolve_unverified(before_points, cause)
                except ChatDeliveryFailedError:
                    self._state = ChatState.THREAD_ACTIVE
                    raise
            else:
                reply = parse_stream_body(response.body)
                self._state = ChatState.SETTLED

            thread.messages.append(Message(role="assistant", content=reply))
            emit(M.CAST, preview(reply), label=thread.id)
            return reply

    def _sample_points(self) -> int | None:
        try:
            before = self._gauge.fetch_inference_points()
        except Exception as e:
            emit(M.SWRN, f"Failed to get points before chat: {e}")
            logger.warning("Points sample before chat failed; verification disabled", exc_info=True)
            return None
        logger.debug("Points before chat: %d", before)
        return before

    def _resolve_unverified(self, before_points: int | None, cause: ApiError | None) -> str:
        emit(M.VWAT, "Verifying chat with point increase...")
        if before_points is not None and self._resolver.resolve(before_points):
            emit(M.VPAS, "Chat verified successful through point increase!")
            return PLACEHOLDER_VERIFIED_ABORT

        reason = "no points sample before sending" if before_points is None else "no point increase detected"
        emit(M.CERR, f"Chat failed: stream aborted and {reason}")
        error = ChatDeliveryFailedError(f"Chat failed: Stream aborted and {reason}")
        if cause is not None:
            raise error from cause
        raise error
