"""Centralized prompt template builders.

Templates are plain-text files next to this module with ``{LANGUAGE}``,
``{CODE}``, and ``{DESCRIPTION}`` placeholders.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

_TEMPLATE_DIR = Path(__file__).parent


@lru_cache(maxsize=None)
def load_template(name: str) -> str:
    """Load a built-in template by name (without ``.txt``)."""
    template_file = _TEMPLATE_DIR / f"{name}.txt"
    if not template_file.exists():
        raise FileNotFoundError(f"Prompt template not found: {template_file}")
    return template_file.read_text(encoding="utf-8").strip()


def _fill(template: str, **values: str) -> str:
    # CODE is substituted last so placeholder-like text inside user code survives.
    code = values.pop("CODE", None)
    for key, value in values.items():
        template = template.replace("{" + key + "}", value)
    if code is not None:
        template = template.replace("{CODE}", code)
    return template


def _language_label(language: Optional[str]) -> str:
    return language.strip() if language and language.strip() else ""


def build_generate_prompt(description: str, language: str) -> str:
    """Build the code-generation prompt."""
    if not language or not language.strip():
        raise ValueError("language is required for code generation")
    return _fill(
        load_template("generate"),
        LANGUAGE=language.strip(),
        DESCRIPTION=description.strip(),
    )


def build_explain_prompt(code: str, language: Optional[str] = None) -> str:
    """Build the code-explanation prompt."""
    return _fill(load_template("explain"), LANGUAGE=_language_label(language), CODE=code)


def build_refactor_prompt(code: str, language: str) -> str:
    """Build the refactoring prompt."""
    if not language or not language.strip():
        raise ValueError("language is required for refactoring")
    return _fill(load_template("refactor"), LANGUAGE=language.strip(), CODE=code)


def build_optimize_prompt(code: str, language: str) -> str:
    """Build the performance-optimization prompt."""
    if not language or not language.strip():
        raise ValueError("language is required for optimization")
    return _fill(load_template("optimize"), LANGUAGE=language.strip(), CODE=code)


def build_annotate_prompt(code: str, language: Optional[str] = None) -> str:
    """Build the add-comments prompt."""
    return _fill(load_template("annotate"), LANGUAGE=_language_label(language), CODE=code)
