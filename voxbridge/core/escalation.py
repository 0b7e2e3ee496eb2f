"""Escalation of a call from the voice AI to a human agent."""

import asyncio
from typing import TYPE_CHECKING, Any, Mapping

from voxbridge.config.settings import Settings
from voxbridge.core.commands import (
    Command,
    Dial,
    Hangup,
    HookBindings,
    PhoneTarget,
    Say,
    ToolResult,
)
from voxbridge.core.hooks import DIAL_ACTION_HOOK, DIAL_CONFIRM_HOOK, HookEvent, HookKind
from voxbridge.core.state_machine import CallState
from voxbridge.utils.exceptions import ConfigurationError

if TYPE_CHECKING:
    from voxbridge.core.session import CallSession, ToolInvocation

TRANSFER_ACCEPTED = "Successfully transferred call to agent, telling user to wait for a moment."
TRANSFER_FAILED = "Failed to transfer call"
PLEASE_WAIT = "Please wait while I connect your call"
AGENT_CALL_ENDED = "The call with a human agent has ended"


class EscalationController:
    """Runs the transfer-to-human workflow for call sessions.

    The workflow spans a delay and up to two dial callbacks, so it is
    kept apart from the conversational turn handling:

    1. ``begin_transfer`` acknowledges the tool call and schedules the redirect
    2. ``on_redirect_due`` speaks a hold message and dials the agent
    3. ``on_confirmed`` marks the agent leg as answered (confirm hook only)
    4. ``on_completed`` wraps up and closes the call, whatever the dial outcome

    The controller holds no per-call state; everything lives on the session.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def redirect_commands(self) -> list[Command]:
        """Hold message followed by the dial to the human agent.

        Raises:
            ConfigurationError: If no agent number is configured
        """
        if not self.settings.human_agent_number:
            raise ConfigurationError("No human agent number configured")

        hooks = HookBindings(
            action_hook=DIAL_ACTION_HOOK,
            confirm_hook=DIAL_CONFIRM_HOOK if self.settings.use_confirm_hook else None,
        )
        return [
            Say(text=PLEASE_WAIT),
            Dial(
                target=PhoneTarget(
                    number=self.settings.human_agent_number,
                    trunk=self.settings.human_agent_trunk,
                ),
                caller_id=self.settings.human_agent_callerid,
                hooks=hooks,
            ),
        ]

    async def begin_transfer(
        self,
        session: "CallSession",
        invocation: "ToolInvocation",
        summary: str | None = None,
    ) -> bool:
        """Acknowledge a transfer tool call and schedule the redirect.

        The tool result is sent before this returns; the redirect itself
        runs later on the session's event queue.

        Returns:
            True if the transfer was scheduled, False if the call was ended instead
        """
        session.pending_tool_invocation = invocation
        if summary:
            session.capture_summary(summary)

        try:
            self.redirect_commands()
        except ConfigurationError as e:
            session.log.error("transfer_unavailable", error=e.message, tool_call_id=invocation.id)
            try:
                await session.sink.send_tool_output(
                    ToolResult(invocation_id=invocation.id, error_message=TRANSFER_FAILED)
                )
            finally:
                await self._abandon(session, e.message)
            return False

        session.state_machine.transition(CallState.TRANSFER_PENDING)
        try:
            await session.sink.send_tool_output(
                ToolResult(invocation_id=invocation.id, result=TRANSFER_ACCEPTED)
            )
        except Exception as e:
            await self._abandon(session, f"tool result not delivered: {e}")
            return False

        session.redirect_task = asyncio.create_task(self._redirect_after_delay(session))
        session.log.info(
            "transfer_scheduled",
            tool_call_id=invocation.id,
            delay_seconds=self.settings.transfer_delay_seconds,
            has_summary=summary is not None,
        )
        return True

    async def _redirect_after_delay(self, session: "CallSession") -> None:
        await asyncio.sleep(self.settings.transfer_delay_seconds)
        await session.post(HookEvent(HookKind.TRANSFER_TIMER, call_sid=session.id))

    async def on_redirect_due(self, session: "CallSession") -> None:
        """Issue the redirect once the delay has elapsed."""
        self.cancel(session)
        if session.state != CallState.TRANSFER_PENDING:
            session.log.info("redirect_skipped", state=session.state.value)
            return

        try:
            await session.sink.redirect(self.redirect_commands())
        except Exception as e:
            await self._abandon(session, f"redirect not delivered: {e}")
            return
        session.state_machine.transition(CallState.TRANSFERRING)

    def on_confirmed(self, session: "CallSession") -> bool:
        """Human agent answered the dial."""
        if session.state != CallState.TRANSFERRING:
            session.log.info("dial_confirm_ignored", state=session.state.value)
            return False
        return session.state_machine.transition(CallState.TRANSFER_ACTIVE)

    async def on_completed(
        self,
        session: "CallSession",
        outcome: Mapping[str, Any] | None = None,
        msgid: str | None = None,
    ) -> bool:
        """Agent call ended, successfully or not. Wraps up and closes the call.

        Returns:
            True if the wrap-up was issued, False if the event was ignored
        """
        if session.state not in (CallState.TRANSFERRING, CallState.TRANSFER_ACTIVE):
            session.log.info("dial_completion_ignored", state=session.state.value)
            return False

        outcome = outcome or {}
        session.log.info(
            "agent_call_ended",
            dial_call_status=outcome.get("dial_call_status"),
            dial_sip_status=outcome.get("dial_sip_status"),
        )
        session.state_machine.transition(CallState.WRAPPING_UP)

        commands: list[Command] = [Say(text=AGENT_CALL_ENDED)]
        summary = session.consume_summary()
        if summary and self.settings.speak_summary:
            commands.append(Say(text=summary))
        commands.append(Hangup())

        await session.respond(msgid, commands)
        session.close("agent call ended")
        return True

    async def _abandon(self, session: "CallSession", reason: str) -> None:
        """End a transfer that can no longer proceed.

        The hangup is attempted once; the session closes either way.
        """
        session.log.error("transfer_abandoned", reason=reason)
        try:
            await session.sink.redirect([Hangup()])
        except Exception as e:
            session.log.warning("hangup_not_delivered", error=str(e))
        session.close(f"transfer failed: {reason}")

    def cancel(self, session: "CallSession") -> None:
        """Cancel a redirect that has not fired yet."""
        task = session.redirect_task
        session.redirect_task = None
        if task is not None and not task.done():
            task.cancel()
            session.log.info("redirect_cancelled")
