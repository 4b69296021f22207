"""Prompt assembly for grounded answers.

This module provides:
- Capability prompt blocks
- Token estimation and budget-aware prompt building
"""

from assistant_engine.context.prompt_builder import BuiltPrompt, build_prompt, estimate_tokens

__all__ = [
    "BuiltPrompt",
    "build_prompt",
    "estimate_tokens",
]
