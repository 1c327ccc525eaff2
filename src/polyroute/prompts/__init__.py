"""Prompt templates for the code-task wrappers."""

from .templates import (
    build_annotate_prompt,
    build_explain_prompt,
    build_generate_prompt,
    build_optimize_prompt,
    build_refactor_prompt,
)

__all__ = [
    "build_annotate_prompt",
    "build_explain_prompt",
    "build_generate_prompt",
    "build_optimize_prompt",
    "build_refactor_prompt",
]
