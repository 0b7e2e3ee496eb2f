"""Inbound hook events and their routing to session handlers."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from voxbridge.utils.exceptions import ProtocolError


class HookKind(Enum):
    """Every kind of event a call session reacts to."""

    SESSION_NEW = "session-new"
    PROGRESS_EVENT = "progress-event"
    COMPLETION = "completion"
    TOOL_CALL = "tool-call"
    DIAL_ACTION = "dial-action"
    DIAL_CONFIRM = "dial-confirm"
    CLOSE = "close"
    ERROR = "error"
    TRANSFER_TIMER = "transfer-timer"  # Internal: redirect delay elapsed


# Hook paths bound on the verbs this service issues
COMPLETION_HOOK = "/final"
PROGRESS_HOOK = "/event"
TOOL_HOOK = "/toolCall"
DIAL_ACTION_HOOK = "/dialAction"
DIAL_CONFIRM_HOOK = "/confirmAction"

DEFAULT_HOOK_PATHS: dict[str, HookKind] = {
    COMPLETION_HOOK: HookKind.COMPLETION,
    PROGRESS_HOOK: HookKind.PROGRESS_EVENT,
    TOOL_HOOK: HookKind.TOOL_CALL,
    DIAL_ACTION_HOOK: HookKind.DIAL_ACTION,
    DIAL_CONFIRM_HOOK: HookKind.DIAL_CONFIRM,
}

# jambonz message types that never need routing
IGNORED_MESSAGE_TYPES = frozenset({"call:status", "verb:status", "session:reconnect"})


@dataclass
class HookEvent:
    """One inbound notification for a call session."""

    kind: HookKind
    payload: dict[str, Any] = field(default_factory=dict)
    msgid: str | None = None  # Set when the sender expects an ack
    call_sid: str | None = None


Handler = Callable[[HookEvent], Awaitable[None]]


class HookRouter:
    """Dispatches hook events to the handlers of one session.

    A router is bound to exactly one session: it holds one handler for
    every ``HookKind`` and refuses to be built with any missing.
    """

    def __init__(self, handlers: Mapping[HookKind, Handler]):
        missing = [kind.value for kind in HookKind if kind not in handlers]
        if missing:
            raise ValueError(f"No handler bound for hook kinds: {', '.join(missing)}")
        self._handlers = dict(handlers)

    async def dispatch(self, event: HookEvent) -> None:
        await self._handlers[event.kind](event)


def parse_message(
    raw: str | bytes | Mapping[str, Any],
    hook_paths: Mapping[str, HookKind] | None = None,
) -> HookEvent | None:
    """Turn one jambonz WebSocket message into a HookEvent.

    Returns None for informational messages that carry no session
    semantics (call status updates and the like).

    Raises:
        ProtocolError: If the message is malformed or names an unknown hook
    """
    paths = hook_paths or DEFAULT_HOOK_PATHS

    if isinstance(raw, (str, bytes)):
        try:
            message = json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON message: {e}") from e
    else:
        message = dict(raw)

    if not isinstance(message, dict) or "type" not in message:
        raise ProtocolError("Message has no type", details={"message": message})

    msg_type = message["type"]
    msgid = message.get("msgid")
    call_sid = message.get("call_sid")
    data = message.get("data") or {}
    if not isinstance(data, dict):
        data = {"data": data}

    if msg_type in IGNORED_MESSAGE_TYPES:
        return None

    if msg_type == "session:new":
        return HookEvent(HookKind.SESSION_NEW, data, msgid=msgid, call_sid=call_sid)

    if msg_type == "jambonz:error":
        return HookEvent(HookKind.ERROR, data, call_sid=call_sid)

    if msg_type == "llm:tool-call":
        # Tool calls are answered with llm:tool-output, not an ack
        return HookEvent(HookKind.TOOL_CALL, data, call_sid=call_sid)

    if msg_type == "llm:event":
        return HookEvent(HookKind.PROGRESS_EVENT, data, call_sid=call_sid)

    if msg_type == "verb:hook":
        hook = message.get("hook")
        kind = paths.get(hook)
        if kind is None:
            raise ProtocolError(f"Unknown hook path: {hook}", details={"msgid": msgid})
        return HookEvent(kind, data, msgid=msgid, call_sid=call_sid)

    raise ProtocolError(f"Unsupported message type: {msg_type}")
