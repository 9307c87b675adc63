"""Service layer helpers for AI-assisted workflows."""

from __future__ import annotations

from .context import (  # noqa: F401
    ContextValidationError,
    build_chapter_context,
    build_context,
    require_title,
    resolve_author_style,
)
from .generation import GenerationError  # noqa: F401

__all__ = [
    "ContextValidationError",
    "GenerationError",
    "build_chapter_context",
    "build_context",
    "require_title",
    "resolve_author_style",
]
