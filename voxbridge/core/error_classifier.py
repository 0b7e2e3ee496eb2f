"""Maps conversational AI failures to caller-facing speech."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from voxbridge.core.commands import Command, Hangup, Say

FAILURE_REASONS = frozenset({"server failure", "server error"})
RATE_LIMIT_CODE = "rate_limit_exceeded"

RATE_LIMIT_MESSAGE = "Sorry, you have exceeded your rate limits."
GENERIC_ERROR_MESSAGE = "Sorry, there was an error processing your request."

_RETRY_AFTER = re.compile(r"try again in (\d+)")


class Disposition(Enum):
    """What happens to the call after the apology."""

    HANGUP = "hangup"


@dataclass(frozen=True)
class Classification:
    message: str
    disposition: Disposition = Disposition.HANGUP

    def commands(self) -> list[Command]:
        """Exactly one speech directive followed by the disposition."""
        return [Say(text=self.message), Hangup()]


def retry_after_seconds(message: str | None) -> int | None:
    """Extract the retry-after duration from a rate limit message."""
    if not message:
        return None
    match = _RETRY_AFTER.search(message)
    return int(match.group(1)) if match else None


def classify_completion(payload: Mapping[str, Any]) -> Classification | None:
    """Classify a completion hook payload.

    Args:
        payload: Completion data with ``completion_reason`` and optional ``error``

    Returns:
        Classification for a recognized failure, None for a normal completion
    """
    if payload.get("completion_reason") not in FAILURE_REASONS:
        return None

    error = payload.get("error") or {}
    if not isinstance(error, Mapping):
        error = {"message": str(error)}

    if error.get("code") != RATE_LIMIT_CODE:
        return Classification(GENERIC_ERROR_MESSAGE)

    seconds = retry_after_seconds(error.get("message"))
    if seconds is None:
        return Classification(RATE_LIMIT_MESSAGE)
    return Classification(f"{RATE_LIMIT_MESSAGE} Please try again in {seconds} seconds.")
