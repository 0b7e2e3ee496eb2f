"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are an agent named Karen. You can help the caller with simple questions "
    "or transfer them to a human agent. Be brief. When you call the tool to transfer "
    "the call provide a brief summary of the call with the user so far."
)


class Settings(BaseSettings):
    """Orchestrator configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Conversational AI (Ultravox via the jambonz llm verb)
    # -------------------------------------------------------------------------
    ultravox_api_key: str = ""
    ultravox_model: str = "fixie-ai/ultravox"
    ultravox_voice: str = "Tanya-English"
    first_speaker: str = "FIRST_SPEAKER_AGENT"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    transfer_tool_name: str = "call-transfer"

    # -------------------------------------------------------------------------
    # Human agent escalation
    # -------------------------------------------------------------------------
    human_agent_number: str | None = None
    human_agent_trunk: str | None = None
    human_agent_callerid: str | None = None
    transfer_delay_seconds: float = Field(default=5.0, ge=0)
    use_confirm_hook: bool = True  # Bind /confirmAction on the dial verb
    speak_summary: bool = True  # Read the captured summary during wrap-up

    # -------------------------------------------------------------------------
    # Call setup
    # -------------------------------------------------------------------------
    answer_call: bool = True
    initial_pause_seconds: float = Field(default=1.5, ge=0)

    # -------------------------------------------------------------------------
    # WebSocket server (jambonz application endpoint)
    # -------------------------------------------------------------------------
    ws_host: str = "0.0.0.0"
    ws_port: int = 3000
    ws_path: str = "/socket"

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    @property
    def agent_configured(self) -> bool:
        """Whether a human agent target is available for transfers."""
        return bool(self.human_agent_number)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
