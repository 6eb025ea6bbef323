"""Tests for klokbot.core.chat — stream parsing and the ChatSession state machine."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from klokbot.core.chat import ChatSession, ChatState, Message, parse_stream_body
from klokbot.core.constants import (
    PLACEHOLDER_EMPTY_RESPONSE,
    PLACEHOLDER_PARSE_FAILURE,
    PLACEHOLDER_UNINTERPRETED,
    PLACEHOLDER_VERIFIED_ABORT,
)
from klokbot.core.errors import (
    ApiError,
    AuthorizationError,
    ChatDeliveryFailedError,
    ExhaustionError,
    NoModelSelectedError,
    NotAuthenticatedError,
    TransientNetworkError,
)
from klokbot.core.transport import ApiResponse

# ── helpers ───────────────────────────────────────────────────────────


def _session(
    response: ApiResponse | Exception | None = None,
    points: list[int | Exception] | None = None,
    verified: bool = False,
    model: str | None = "llama-3.3-70b-instruct",
) -> tuple[ChatSession, MagicMock, MagicMock, MagicMock]:
    api = MagicMock()
    if isinstance(response, Exception):
        api.request.side_effect = response
    else:
        api.request.return_value = response or ApiResponse(status=200, body='data: {"content": "hi there"}\n')
    gauge = MagicMock()
    gauge.fetch_inference_points.side_effect = points if points is not None else [100]
    resolver = MagicMock()
    resolver.resolve.return_value = verified
    return ChatSession(api, gauge, resolver, model=model), api, gauge, resolver


# ── parse_stream_body ───────────────────────────────────────────────────


def test_parse_single_data_line() -> None:
    assert parse_stream_body('data: {"content":"hello"}\n') == "hello"


def test_parse_first_content_wins() -> None:
    body = 'data: {"content": ""}\ndata: {"content": "first"}\ndata: {"content": "second"}\n'
    assert parse_stream_body(body) == "first"


def test_parse_ignores_lines_after_first_content() -> None:
    body = 'data: {"content": "ok"}\ndata: not json at all\n'
    assert parse_stream_body(body) == "ok"


def test_parse_no_data_lines_is_uninterpreted() -> None:
    assert parse_stream_body('{"error": "something"}') == PLACEHOLDER_UNINTERPRETED


def test_parse_data_lines_without_content_is_uninterpreted() -> None:
    assert parse_stream_body('data: {"id": 1}\ndata: [1, 2]\n') == PLACEHOLDER_UNINTERPRETED


def test_parse_empty_body() -> None:
    assert parse_stream_body("") == PLACEHOLDER_EMPTY_RESPONSE


def test_parse_malformed_payload_is_parse_failure() -> None:
    assert parse_stream_body("data: {broken\n") == PLACEHOLDER_PARSE_FAILURE


# ── thread lifecycle ────────────────────────────────────────────────────


def test_initial_state() -> None:
    chat, *_ = _session()
    assert chat.state is ChatState.UNINITIALIZED
    assert chat.current_thread is None
    assert chat.history() == []


def test_create_thread_replaces_existing() -> None:
    chat, *_ = _session()
    first = chat.create_thread()
    chat.send("hello")

    second = chat.create_thread()

    assert second.id != first.id
    assert second.messages == []
    assert chat.state is ChatState.THREAD_ACTIVE


def test_set_selected_model() -> None:
    chat, *_ = _session(model=None)
    chat.set_selected_model("deepseek-r1")
    assert chat.selected_model == "deepseek-r1"


# ── send: settled path ──────────────────────────────────────────────────


def test_send_requires_model() -> None:
    chat, api, gauge, _ = _session(model=None)

    with pytest.raises(NoModelSelectedError):
        chat.send("hello")

    api.request.assert_not_called()
    gauge.fetch_inference_points.assert_not_called()
    assert chat.current_thread is None


def test_send_auto_creates_thread_and_appends_exchange() -> None:
    chat, api, _, resolver = _session()

    reply = chat.send("hello")

    assert reply == "hi there"
    assert chat.state is ChatState.SETTLED
    assert chat.history() == [Message("user", "hello"), Message("assistant", "hi there")]
    resolver.resolve.assert_not_called()


def test_send_payload_carries_full_history() -> None:
    chat, api, gauge, _ = _session(points=[1, 2])
    chat.send("one")
    thread = chat.current_thread
    assert thread is not None

    chat.send("two")

    method, endpoint, payload, headers = api.request.call_args.args
    assert (method, endpoint) == ("POST", "/chat")
    assert headers == {"Content-Type": "application/json"}
    assert api.request.call_args.kwargs["stream"] is True
    assert payload == {
        "id": thread.id,
        "title": "",
        "language": "english",
        "messages": [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "hi there"},
            {"role": "user", "content": "two"},
        ],
        "model": "llama-3.3-70b-instruct",
        "sources": [],
    }
    json.dumps(payload)


def test_send_unparseable_body_still_settles() -> None:
    chat, *_ = _session(response=ApiResponse(status=200, body="data: {oops\n"))

    assert chat.send("hello") == PLACEHOLDER_PARSE_FAILURE
    assert chat.state is ChatState.SETTLED
    assert chat.history()[-1] == Message("assistant", PLACEHOLDER_PARSE_FAILURE)


def test_send_points_failure_does_not_abort_settled_send() -> None:
    chat, api, _, _ = _session(points=[TransientNetworkError("down")])

    assert chat.send("hello") == "hi there"
    api.request.assert_called_once()


# ── send: unverified path ───────────────────────────────────────────────


def test_stream_abort_verified_synthesizes_placeholder() -> None:
    chat, _, _, resolver = _session(response=ApiResponse.aborted(), points=[41], verified=True)

    reply = chat.send("hello")

    assert reply == PLACEHOLDER_VERIFIED_ABORT
    resolver.resolve.assert_called_once_with(41)
    assert chat.history() == [Message("user", "hello"), Message("assistant", PLACEHOLDER_VERIFIED_ABORT)]
    assert chat.state is ChatState.UNVERIFIED


def test_stream_abort_unverified_fails_but_keeps_user_message() -> None:
    chat, _, _, resolver = _session(response=ApiResponse.aborted(), verified=False)

    with pytest.raises(ChatDeliveryFailedError):
        chat.send("hello")

    assert chat.history() == [Message("user", "hello")]
    assert chat.state is ChatState.THREAD_ACTIVE
    resolver.resolve.assert_called_once_with(100)


def test_exhausted_retries_go_to_verification() -> None:
    exhausted = ExhaustionError("gave up", last_error=TransientNetworkError("timeout"))
    chat, _, _, resolver = _session(response=exhausted, points=[7], verified=True)

    assert chat.send("hello") == PLACEHOLDER_VERIFIED_ABORT
    resolver.resolve.assert_called_once_with(7)


def test_exhausted_retries_unverified_chains_cause() -> None:
    exhausted = ExhaustionError("gave up", last_error=TransientNetworkError("timeout"))
    chat, *_ = _session(response=exhausted, verified=False)

    with pytest.raises(ChatDeliveryFailedError) as exc_info:
        chat.send("hello")

    assert exc_info.value.__cause__ is exhausted


def test_abort_without_points_sample_is_not_verified() -> None:
    chat, _, _, resolver = _session(response=ApiResponse.aborted(), points=[ApiError("nope")], verified=True)

    with pytest.raises(ChatDeliveryFailedError):
        chat.send("hello")

    resolver.resolve.assert_not_called()
    assert chat.history() == [Message("user", "hello")]


@pytest.mark.parametrize(
    "error",
    [
        AuthorizationError("401", status_code=401),
        ApiError("HTTP 400", status_code=400),
        ExhaustionError("all rejected", last_error=AuthorizationError("401")),
    ],
)
def test_definitive_rejection_fails_without_verification(error: ApiError) -> None:
    chat, _, _, resolver = _session(response=error, verified=True)

    with pytest.raises(ChatDeliveryFailedError) as exc_info:
        chat.send("hello")

    assert exc_info.value.__cause__ is error
    resolver.resolve.assert_not_called()
    assert chat.history() == [Message("user", "hello")]
    assert chat.state is ChatState.THREAD_ACTIVE


def test_user_message_appended_before_network_attempt() -> None:
    chat, api, _, _ = _session()
    seen: list[list[Message]] = []

    def record(*args, **kwargs):
        seen.append(chat.history())
        raise ApiError("HTTP 400", status_code=400)

    api.request.side_effect = record

    with pytest.raises(ChatDeliveryFailedError):
        chat.send("hello")

    assert seen == [[Message("user", "hello")]]


def test_send_before_login_is_delivery_failure() -> None:
    missing = NotAuthenticatedError("No active session token")
    chat, _, _, resolver = _session(response=missing, points=[NotAuthenticatedError("no token")])

    with pytest.raises(ChatDeliveryFailedError) as exc_info:
        chat.send("hello")

    assert exc_info.value.__cause__ is missing
    resolver.resolve.assert_not_called()
    assert chat.state is ChatState.THREAD_ACTIVE


def test_thread_usable_after_failed_send() -> None:
    chat, api, _, _ = _session(points=[1, 2])
    api.request.side_effect = [
        ApiError("HTTP 400", status_code=400),
        ApiResponse(status=200, body='data: {"content": "second try"}\n'),
    ]

    with pytest.raises(ChatDeliveryFailedError):
        chat.send("first")
    assert chat.send("again") == "second try"

    assert chat.state is ChatState.SETTLED
    assert [m.content for m in chat.history()] == ["first", "again", "second try"]
