"""Tests for call session event handling."""

import pytest

from voxbridge.core.commands import Answer, Hangup, Pause, Say, StartConversation
from voxbridge.core.error_classifier import GENERIC_ERROR_MESSAGE
from voxbridge.core.hooks import HookEvent, HookKind
from voxbridge.core.session import CallSession
from voxbridge.core.state_machine import CallState


def session_new(msgid="m-new"):
    return HookEvent(HookKind.SESSION_NEW, {"from": "+15550001"}, msgid=msgid, call_sid="test-call")


def completion(reason, error=None, msgid="m-final"):
    payload = {"completion_reason": reason}
    if error is not None:
        payload["error"] = error
    return HookEvent(HookKind.COMPLETION, payload, msgid=msgid)


def tool_call(name="call-transfer", tool_call_id="abc", args=None):
    return HookEvent(
        HookKind.TOOL_CALL,
        {"name": name, "tool_call_id": tool_call_id, "args": args or {}},
    )


class TestSessionStart:
    """Tests for session:new handling."""

    @pytest.mark.asyncio
    async def test_starts_conversation(self, session, sink):
        await session.handle(session_new())

        assert session.state == CallState.CONVERSING
        kind, (msgid, commands) = sink.sent[0]
        assert kind == "reply"
        assert msgid == "m-new"
        assert [type(c) for c in commands] == [Answer, Pause, StartConversation, Hangup]
        assert commands[1].duration_seconds == 1.5

    @pytest.mark.asyncio
    async def test_answer_is_optional(self, settings, sink):
        session = CallSession("test-call", settings.model_copy(update={"answer_call": False}), sink)
        await session.handle(session_new())

        assert sink.verbs() == ["pause", "llm", "hangup"]

    @pytest.mark.asyncio
    async def test_conversation_started_at_most_once(self, session, sink):
        await session.handle(session_new("m1"))
        await session.handle(session_new("m2"))

        assert sink.verbs().count("llm") == 1
        assert sink.sent[1] == ("reply", ("m2", []))

    @pytest.mark.asyncio
    async def test_setup_failure_hangs_up(self, settings, sink):
        session = CallSession("test-call", settings.model_copy(update={"ultravox_api_key": ""}), sink)
        await session.handle(session_new())

        assert sink.sent == [("reply", ("m-new", [Hangup()]))]
        assert "llm" not in sink.verbs()
        assert session.state == CallState.CLOSED
        assert session.close_reason == "setup failed: No Ultravox API key configured"


class TestCompletion:
    """Tests for conversation completion handling."""

    @pytest.mark.asyncio
    async def test_rate_limit_failure_apologizes_and_hangs_up(self, session, sink):
        await session.handle(session_new())
        await session.handle(
            completion(
                "server failure",
                {"code": "rate_limit_exceeded", "message": "try again in 10 seconds"},
            )
        )

        assert sink.sent[-1] == (
            "reply",
            (
                "m-final",
                [
                    Say(text="Sorry, you have exceeded your rate limits. Please try again in 10 seconds."),
                    Hangup(),
                ],
            ),
        )
        assert session.state == CallState.CLOSED
        assert session.close_reason == "conversation failed: server failure"

    @pytest.mark.asyncio
    async def test_generic_failure(self, session, sink):
        await session.handle(session_new())
        await session.handle(completion("server error", {"code": "boom", "message": "x"}))

        _, (_, commands) = sink.sent[-1]
        assert commands == [Say(text=GENERIC_ERROR_MESSAGE), Hangup()]
        assert session.state == CallState.CLOSED

    @pytest.mark.asyncio
    async def test_normal_completion_is_acknowledged(self, session, sink):
        await session.handle(session_new())
        await session.handle(completion("normal conversation end"))

        assert sink.sent[-1] == ("reply", ("m-final", []))
        assert session.state == CallState.WRAPPING_UP

    @pytest.mark.asyncio
    async def test_completion_while_transfer_pending_holds_the_line(self, session, sink):
        await session.handle(session_new())
        await session.handle(tool_call())
        await session.handle(completion("server failure", {"code": "boom"}))

        kind, (_, commands) = sink.sent[-1]
        assert kind == "reply"
        assert [type(c) for c in commands] == [Pause]
        assert session.state == CallState.TRANSFER_PENDING
        session.close("test finished")


class TestToolCalls:
    """Tests for tool invocation handling."""

    @pytest.mark.asyncio
    async def test_unknown_tool_is_rejected(self, session, sink):
        await session.handle(session_new())
        await session.handle(tool_call(name="lookup-order", tool_call_id="t1"))

        (result,) = sink.tool_results()
        assert result.invocation_id == "t1"
        assert result.error_message == "Unknown tool: lookup-order"
        assert session.state == CallState.CONVERSING
        assert session.pending_tool_invocation is None

    @pytest.mark.asyncio
    async def test_second_transfer_is_rejected(self, session, sink):
        await session.handle(session_new())
        await session.handle(tool_call(tool_call_id="t1"))
        await session.handle(tool_call(tool_call_id="t2"))

        first, second = sink.tool_results()
        assert first.ok is True
        assert second.invocation_id == "t2"
        assert second.error_message == "A transfer is already in progress"
        assert session.pending_tool_invocation.id == "t1"
        session.close("test finished")

    @pytest.mark.asyncio
    async def test_transfer_before_conversation_is_rejected(self, session, sink):
        await session.handle(tool_call(tool_call_id="t1"))

        (result,) = sink.tool_results()
        assert result.ok is False
        assert session.state == CallState.INITIATED

    @pytest.mark.asyncio
    async def test_args_as_json_string(self, session, sink):
        await session.handle(session_new())
        await session.handle(tool_call(args='{"conversationSummary": "billing help"}'))

        assert session.conversation_summary == "billing help"
        session.close("test finished")

    @pytest.mark.asyncio
    async def test_tool_call_without_id_is_logged_only(self, session, sink):
        await session.handle(session_new())
        await session.handle(tool_call(tool_call_id=None))

        assert sink.tool_results() == []
        assert session.state == CallState.CONVERSING


class TestClose:
    """Tests for transport close and error handling."""

    @pytest.mark.asyncio
    async def test_close_records_reason_once(self, session):
        await session.handle(session_new())
        await session.handle(HookEvent(HookKind.CLOSE, {"code": 1000, "reason": "normal"}))
        await session.handle(HookEvent(HookKind.ERROR, {"error": "late"}))

        assert session.state == CallState.CLOSED
        assert session.close_reason == "1000: normal"

    @pytest.mark.asyncio
    async def test_error_closes_session(self, session):
        await session.handle(session_new())
        await session.handle(HookEvent(HookKind.ERROR, {"error": "socket reset"}))

        assert session.state == CallState.CLOSED
        assert session.close_reason == "error: socket reset"

    @pytest.mark.asyncio
    async def test_nothing_sent_after_close(self, session, sink):
        await session.handle(session_new())
        await session.handle(HookEvent(HookKind.CLOSE, {}))
        sent_before = list(sink.sent)

        for event in (
            completion("server failure", {"code": "boom"}),
            tool_call(),
            HookEvent(HookKind.DIAL_ACTION, {}, msgid="m-dial"),
            HookEvent(HookKind.DIAL_CONFIRM, {}, msgid="m-confirm"),
            session_new("m-again"),
        ):
            await session.handle(event)
            await session.post(event)

        assert sink.sent == sent_before
        assert session.state == CallState.CLOSED

    @pytest.mark.asyncio
    async def test_handler_errors_are_absorbed(self, session, sink):
        async def broken_reply(msgid, commands):
            raise RuntimeError("socket gone")

        sink.reply = broken_reply
        await session.handle(session_new())

        assert session.state == CallState.CONVERSING


class TestEventQueue:
    """Tests for in-order processing through the session worker."""

    @pytest.mark.asyncio
    async def test_events_processed_in_arrival_order(self, running_session, sink):
        await running_session.post(session_new())
        await running_session.post(HookEvent(HookKind.PROGRESS_EVENT, {"type": "transcript"}))
        await running_session.post(completion("normal conversation end"))
        await running_session.join()

        assert sink.kinds == ["reply", "reply"]
        assert sink.sent[1] == ("reply", ("m-final", []))
        assert running_session.state == CallState.WRAPPING_UP

    @pytest.mark.asyncio
    async def test_worker_stops_after_close(self, session):
        await session.post(session_new())
        await session.post(HookEvent(HookKind.CLOSE, {"reason": "hangup"}))
        await session.post(completion("server failure"))

        await session.run()

        assert session.state == CallState.CLOSED
        assert session.close_reason == "hangup"
