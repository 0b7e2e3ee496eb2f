"""Call-control directives and the sink that executes them.

Each directive renders to a jambonz verb (or, for tool results, to the
``client_tool_result`` payload the voice AI expects). Directives in one
batch are executed by the sink in the order given.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol, Sequence


@dataclass(frozen=True)
class Command:
    """Base class for outward call-control directives."""

    verb: ClassVar[str] = ""

    def to_verb(self) -> dict[str, Any]:
        return {"verb": self.verb}


@dataclass(frozen=True)
class Answer(Command):
    verb: ClassVar[str] = "answer"


@dataclass(frozen=True)
class Pause(Command):
    verb: ClassVar[str] = "pause"

    duration_seconds: float = 1.0

    def to_verb(self) -> dict[str, Any]:
        return {"verb": self.verb, "length": self.duration_seconds}


@dataclass(frozen=True)
class Say(Command):
    verb: ClassVar[str] = "say"

    text: str = ""

    def to_verb(self) -> dict[str, Any]:
        return {"verb": self.verb, "text": self.text}


@dataclass(frozen=True)
class Hangup(Command):
    verb: ClassVar[str] = "hangup"


@dataclass(frozen=True)
class HookBindings:
    """Hook paths a verb reports back on."""

    action_hook: str | None = None
    event_hook: str | None = None
    tool_hook: str | None = None
    confirm_hook: str | None = None

    def to_dict(self) -> dict[str, str]:
        bindings = {
            "actionHook": self.action_hook,
            "eventHook": self.event_hook,
            "toolHook": self.tool_hook,
            "confirmHook": self.confirm_hook,
        }
        return {key: value for key, value in bindings.items() if value}


@dataclass(frozen=True)
class StartConversation(Command):
    """Hand the call to the conversational AI (jambonz ``llm`` verb)."""

    verb: ClassVar[str] = "llm"

    vendor: str = "ultravox"
    model: str = ""
    auth: dict[str, Any] = field(default_factory=dict)
    hooks: HookBindings = field(default_factory=HookBindings)
    llm_options: dict[str, Any] = field(default_factory=dict)

    def to_verb(self) -> dict[str, Any]:
        return {
            "verb": self.verb,
            "vendor": self.vendor,
            "model": self.model,
            "auth": dict(self.auth),
            **self.hooks.to_dict(),
            "llmOptions": self.llm_options,
        }


@dataclass(frozen=True)
class PhoneTarget:
    number: str
    trunk: str | None = None

    def to_dict(self) -> dict[str, str]:
        target = {"type": "phone", "number": self.number}
        if self.trunk:
            target["trunk"] = self.trunk
        return target


@dataclass(frozen=True)
class Dial(Command):
    verb: ClassVar[str] = "dial"

    target: PhoneTarget | None = None
    caller_id: str | None = None
    hooks: HookBindings = field(default_factory=HookBindings)
    anchor_media: bool = True

    def to_verb(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"verb": self.verb, **self.hooks.to_dict()}
        if self.caller_id:
            payload["callerId"] = self.caller_id
        payload["anchorMedia"] = self.anchor_media
        payload["target"] = [self.target.to_dict()] if self.target else []
        return payload


@dataclass(frozen=True)
class ToolResult:
    """Synchronous reply to a tool invocation from the voice AI."""

    invocation_id: str
    result: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_message is None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "client_tool_result",
            "invocation_id": self.invocation_id,
        }
        if self.error_message is not None:
            payload["error_message"] = self.error_message
        else:
            payload["result"] = self.result
        return payload


def render(commands: Sequence[Command]) -> list[dict[str, Any]]:
    """Render a batch of directives to jambonz verbs, preserving order."""
    return [command.to_verb() for command in commands]


class CommandSink(Protocol):
    """Executes directives against the live telephony leg."""

    async def reply(self, msgid: str | None, commands: Sequence[Command]) -> None:
        """Acknowledge an inbound hook, optionally with verbs to run next."""
        ...

    async def redirect(self, commands: Sequence[Command]) -> None:
        """Replace whatever the leg is currently executing."""
        ...

    async def send_tool_output(self, result: ToolResult) -> None:
        """Reply to a tool invocation."""
        ...
