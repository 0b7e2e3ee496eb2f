"""Core call orchestration module."""

from voxbridge.core.state_machine import CallState, CallStateMachine

__all__ = ["CallState", "CallStateMachine"]
