"""Call session: one inbound call from session:new to hangup."""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from voxbridge.config.settings import Settings
from voxbridge.core.commands import Answer, Command, CommandSink, Hangup, Pause, ToolResult
from voxbridge.core.error_classifier import classify_completion
from voxbridge.core.escalation import EscalationController
from voxbridge.core.hooks import HookEvent, HookKind, HookRouter
from voxbridge.core.state_machine import CallState, CallStateMachine
from voxbridge.services.llm.ultravox import UltravoxConversation, extract_summary
from voxbridge.utils.logging import get_call_logger

# Extra hold time when the conversation ends while a redirect is pending
HOLD_MARGIN_SECONDS = 5.0


class ToolKind(Enum):
    TRANSFER = "transfer"


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call from the voice AI that is waiting on its side effect."""

    id: str
    kind: ToolKind
    name: str = ""


class CallSession:
    """Owns the lifecycle of one call.

    Hook events are queued with ``post`` and handled one at a time by
    ``run``, in arrival order, so handlers for the same call never
    interleave. Once the session is CLOSED nothing more is sent.
    """

    def __init__(
        self,
        call_id: str,
        settings: Settings,
        sink: CommandSink,
        escalation: EscalationController | None = None,
        conversation: UltravoxConversation | None = None,
    ):
        """Initialize the session.

        Args:
            call_id: jambonz call_sid, stable for the call
            settings: Application settings
            sink: Where outward commands are sent
            escalation: Transfer workflow, built from settings if omitted
            conversation: Voice AI setup, built from settings if omitted
        """
        self.id = call_id
        self.settings = settings
        self.sink = sink
        self.escalation = escalation or EscalationController(settings)
        self.conversation = conversation or UltravoxConversation(settings)
        self.log = get_call_logger(__name__, call_id)

        self.state_machine = CallStateMachine(call_id)
        self.pending_tool_invocation: ToolInvocation | None = None
        self.redirect_task: asyncio.Task | None = None
        self._conversation_summary: str | None = None
        self._summary_consumed = False
        self._close_reason: str | None = None

        self._events: asyncio.Queue[HookEvent] = asyncio.Queue()
        self.router = HookRouter(
            {
                HookKind.SESSION_NEW: self._on_session_new,
                HookKind.PROGRESS_EVENT: self._on_progress_event,
                HookKind.COMPLETION: self._on_completion,
                HookKind.TOOL_CALL: self._on_tool_call,
                HookKind.DIAL_ACTION: self._on_dial_action,
                HookKind.DIAL_CONFIRM: self._on_dial_confirm,
                HookKind.CLOSE: self._on_close,
                HookKind.ERROR: self._on_error,
                HookKind.TRANSFER_TIMER: self._on_transfer_timer,
            }
        )

    @property
    def state(self) -> CallState:
        return self.state_machine.state

    @property
    def closed(self) -> bool:
        return self.state_machine.is_closed()

    @property
    def conversation_summary(self) -> str | None:
        return self._conversation_summary

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    def capture_summary(self, summary: str) -> None:
        """Remember the summary handed over by the transfer tool call."""
        if self._summary_consumed:
            self.log.warning("summary_already_consumed")
            return
        self._conversation_summary = summary

    def consume_summary(self) -> str | None:
        """Hand the summary to the wrap-up step; it cannot change afterwards."""
        self._summary_consumed = True
        return self._conversation_summary

    def close(self, reason: str) -> None:
        """Close the call from any state. Safe to call more than once."""
        if self._close_reason is None:
            self._close_reason = reason
        during_transfer = self.state_machine.in_transfer()
        self.escalation.cancel(self)
        if self.state_machine.close():
            self.log.info(
                "session_closed",
                reason=self._close_reason,
                during_transfer=during_transfer,
            )

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    async def post(self, event: HookEvent) -> None:
        """Queue an event for in-order processing."""
        if self.closed:
            self.log.debug("event_dropped_after_close", kind=event.kind.value)
            return
        self._events.put_nowait(event)

    async def run(self) -> None:
        """Process queued events until the session is closed."""
        while not self.closed:
            event = await self._events.get()
            try:
                await self.handle(event)
            finally:
                self._events.task_done()

        # Anything still queued arrived too late to matter
        while not self._events.empty():
            event = self._events.get_nowait()
            self.log.debug("event_dropped_after_close", kind=event.kind.value)
            self._events.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self._events.join()

    async def handle(self, event: HookEvent) -> None:
        """Handle a single event. Errors are logged, never raised."""
        if self.closed:
            self.log.debug("event_ignored_after_close", kind=event.kind.value)
            return
        try:
            await self.router.dispatch(event)
        except Exception as e:
            self.log.error(
                "hook_handler_error",
                kind=event.kind.value,
                state=self.state.value,
                error=str(e),
                exc_info=True,
            )

    async def respond(self, msgid: str | None, commands: Sequence[Command]) -> None:
        """Answer a hook with commands.

        Hooks that expect an ack get the commands in the ack. Otherwise
        non-empty batches are pushed as a redirect.
        """
        if self.closed:
            if commands:
                self.log.warning("command_after_close_suppressed", count=len(commands))
            return
        if msgid is not None:
            await self.sink.reply(msgid, commands)
        elif commands:
            await self.sink.redirect(commands)

    # ------------------------------------------------------------------
    # Hook handlers
    # ------------------------------------------------------------------

    async def _on_session_new(self, event: HookEvent) -> None:
        if self.state != CallState.INITIATED:
            self.log.warning("duplicate_session_new", state=self.state.value)
            await self.respond(event.msgid, [])
            return

        self.log.info("new_incoming_call", **_call_details(event.payload))
        try:
            commands: list[Command] = []
            if self.settings.answer_call:
                commands.append(Answer())
            commands.append(Pause(duration_seconds=self.settings.initial_pause_seconds))
            commands.append(self.conversation.start_command())
            commands.append(Hangup())
        except Exception as e:
            self.log.error("session_setup_failed", error=str(e))
            await self.respond(event.msgid, [Hangup()])
            self.close(f"setup failed: {e}")
            return

        self.state_machine.transition(CallState.CONVERSING)
        await self.respond(event.msgid, commands)

    async def _on_progress_event(self, event: HookEvent) -> None:
        self.log.debug("progress_event", event_type=event.payload.get("type"))
        await self.respond(event.msgid, [])

    async def _on_completion(self, event: HookEvent) -> None:
        payload = event.payload
        self.log.info(
            "conversation_completed",
            completion_reason=payload.get("completion_reason"),
            state=self.state.value,
        )

        if self.state == CallState.CONVERSING:
            classification = classify_completion(payload)
            if classification is not None:
                self.log.warning(
                    "conversation_failed",
                    error=payload.get("error"),
                    message=classification.message,
                )
                await self.respond(event.msgid, classification.commands())
                self.close(f"conversation failed: {payload.get('completion_reason')}")
                return
            self.state_machine.transition(CallState.WRAPPING_UP)
            await self.respond(event.msgid, [])
        elif self.state == CallState.TRANSFER_PENDING:
            # Keep the leg up until the redirect replaces the queued hangup
            hold = self.settings.transfer_delay_seconds + HOLD_MARGIN_SECONDS
            await self.respond(event.msgid, [Pause(duration_seconds=hold)])
        else:
            await self.respond(event.msgid, [])

    async def _on_tool_call(self, event: HookEvent) -> None:
        payload = event.payload
        name = payload.get("name")
        tool_call_id = payload.get("tool_call_id")
        args = _parse_args(payload.get("args"))
        self.log.info("tool_call", name=name, tool_call_id=tool_call_id)

        if not tool_call_id:
            self.log.warning("tool_call_without_id", name=name)
        elif name != self.settings.transfer_tool_name:
            await self.sink.send_tool_output(
                ToolResult(invocation_id=tool_call_id, error_message=f"Unknown tool: {name}")
            )
        elif self.pending_tool_invocation is not None:
            self.log.warning(
                "transfer_already_pending",
                pending_id=self.pending_tool_invocation.id,
                tool_call_id=tool_call_id,
            )
            await self.sink.send_tool_output(
                ToolResult(
                    invocation_id=tool_call_id,
                    error_message="A transfer is already in progress",
                )
            )
        elif self.state != CallState.CONVERSING:
            await self.sink.send_tool_output(
                ToolResult(
                    invocation_id=tool_call_id,
                    error_message="Call is not in a conversation",
                )
            )
        else:
            invocation = ToolInvocation(id=tool_call_id, kind=ToolKind.TRANSFER, name=name)
            await self.escalation.begin_transfer(self, invocation, extract_summary(args))

        await self.respond(event.msgid, [])

    async def _on_dial_action(self, event: HookEvent) -> None:
        if not await self.escalation.on_completed(self, event.payload, event.msgid):
            await self.respond(event.msgid, [])

    async def _on_dial_confirm(self, event: HookEvent) -> None:
        self.escalation.on_confirmed(self)
        await self.respond(event.msgid, [])

    async def _on_close(self, event: HookEvent) -> None:
        code = event.payload.get("code")
        reason = event.payload.get("reason") or "transport closed"
        self.log.info("session_close_received", code=code, reason=reason)
        self.close(f"{code}: {reason}" if code is not None else reason)

    async def _on_error(self, event: HookEvent) -> None:
        error = event.payload.get("error") or event.payload.get("message") or event.payload
        self.log.error("session_error_received", error=error)
        self.close(f"error: {error}")

    async def _on_transfer_timer(self, event: HookEvent) -> None:
        await self.escalation.on_redirect_due(self)


def _parse_args(args: Any) -> dict[str, Any]:
    """Tool arguments arrive either as an object or as a JSON string."""
    if isinstance(args, dict):
        return args
    if isinstance(args, str):
        try:
            parsed = json.loads(args)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _call_details(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: payload.get(key) for key in ("from", "to", "direction") if key in payload}
