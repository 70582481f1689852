"""Prompt templates for the receptionist agent."""

from src.prompts.receptionist import DEFAULT_INSTRUCTIONS, ReceptionistPromptBuilder

__all__ = [
    "DEFAULT_INSTRUCTIONS",
    "ReceptionistPromptBuilder",
]
