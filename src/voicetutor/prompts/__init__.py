"""Prompt builders for the voice tutor."""

from __future__ import annotations

from voicetutor.prompts.math_tutor import (
    OPENAI_FOCUS_RULES,
    build_math_tutor_instruction,
    build_openai_instruction,
)

__all__ = [
    "OPENAI_FOCUS_RULES",
    "build_math_tutor_instruction",
    "build_openai_instruction",
]
