"""Voxbridge: voice AI call orchestration with human agent escalation."""

__version__ = "0.1.0"
