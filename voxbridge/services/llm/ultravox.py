"""Ultravox conversation setup through the jambonz llm verb."""

from dataclasses import dataclass
from typing import Any

from voxbridge.config.settings import Settings
from voxbridge.core.commands import HookBindings, StartConversation
from voxbridge.core.hooks import COMPLETION_HOOK, PROGRESS_HOOK, TOOL_HOOK
from voxbridge.utils.exceptions import ConfigurationError

VENDOR = "ultravox"
SUMMARY_PARAMETER = "conversationSummary"


@dataclass
class UltravoxConversation:
    """Builds the directive that hands a call to Ultravox.

    The conversation is given one client-side tool, the transfer tool,
    whose single required parameter carries a summary of the call so far.
    """

    settings: Settings

    def transfer_tool(self) -> dict[str, Any]:
        """Declaration of the transfer-to-human tool."""
        return {
            "temporaryTool": {
                "modelToolName": self.settings.transfer_tool_name,
                "description": "Transfers the call to a human agent",
                "dynamicParameters": [
                    {
                        "name": SUMMARY_PARAMETER,
                        "location": "PARAMETER_LOCATION_BODY",
                        "schema": {
                            "type": "string",
                            "description": "A summary of the conversation so far",
                        },
                        "required": True,
                    }
                ],
                "client": {},
            }
        }

    def llm_options(self) -> dict[str, Any]:
        return {
            "systemPrompt": self.settings.system_prompt,
            "firstSpeaker": self.settings.first_speaker,
            "initialMessages": [
                {
                    "medium": "MESSAGE_MEDIUM_VOICE",
                    "role": "MESSAGE_ROLE_USER",
                }
            ],
            "model": self.settings.ultravox_model,
            "voice": self.settings.ultravox_voice,
            "transcriptOptional": True,
            "selectedTools": [self.transfer_tool()],
        }

    def start_command(self) -> StartConversation:
        """Directive starting the conversation with all three hooks bound.

        Raises:
            ConfigurationError: If no Ultravox API key is configured
        """
        if not self.settings.ultravox_api_key:
            raise ConfigurationError("No Ultravox API key configured")

        return StartConversation(
            vendor=VENDOR,
            model=self.settings.ultravox_model,
            auth={"apiKey": self.settings.ultravox_api_key},
            hooks=HookBindings(
                action_hook=COMPLETION_HOOK,
                event_hook=PROGRESS_HOOK,
                tool_hook=TOOL_HOOK,
            ),
            llm_options=self.llm_options(),
        )


def extract_summary(args: Any) -> str | None:
    """Pull the conversation summary out of transfer tool arguments.

    Accepts both the declared camelCase name and its snake_case form.
    """
    if not isinstance(args, dict):
        return None
    summary = args.get(SUMMARY_PARAMETER) or args.get("conversation_summary")
    if isinstance(summary, str) and summary.strip():
        return summary.strip()
    return None
