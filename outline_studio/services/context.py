"""Assemble the creative settings into the text block sent with every request."""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

from ..models import (
    AUX_ASSET_KINDS,
    AssetKind,
    AuthorStyle,
    Choice,
    CreativeSettings,
    CustomChoice,
    FixedChoice,
    OutlineEntry,
)

UNTITLED = "未命名"
NOT_PROVIDED = "未提供"
NOT_PROVIDED_WORLD = "未提供 (Not provided)"
NOT_GENERATED = "未生成"

_ASSET_LABELS = {
    AssetKind.SYNOPSIS: "一句话梗概 (Synopsis)",
    AssetKind.STORY_HOOK: "故事钩子 (Story Hook)",
    AssetKind.GOLDEN_FINGER: "金手指 (Golden Finger)",
    AssetKind.CORE_SETTING: "核心设定 (Core Setting)",
    AssetKind.CHARACTER_PROFILES: "人物设定 (Character Profiles)",
    AssetKind.FULL_WORLDVIEW: "完整世界观 (Full Worldview)",
}


def build_context(settings: CreativeSettings) -> str:
    """Fold the current settings into the canonical context block.

    Lines always appear in the same order. Empty values are replaced with a
    placeholder instead of being dropped, so prompts keep a stable shape.
    """

    lines = [
        f"小说标题 (Title): {_or_placeholder(settings.title, UNTITLED)}",
        f"小说篇幅 (Length): {_length_label(settings)}",
        f"主题 (Theme): {_resolve_choice(settings.theme)}",
        f"角色 (Character): {_resolve_choice(settings.character)}",
        f"情节 (Plot): {_resolve_choice(settings.plot)}",
        "--- 世界观与设定 (Worldview & Setting) ---",
        f"世界背景 (World Background): {_or_placeholder(settings.world_background, NOT_PROVIDED_WORLD)}",
        f"力量/规则体系 (Power System): {_or_placeholder(settings.power_system, NOT_PROVIDED_WORLD)}",
        f"独特设定亮点 (Unique Setting Points): {_or_placeholder(settings.unique_setting, NOT_PROVIDED_WORLD)}",
    ]
    return "\n".join(lines)


def build_chapter_context(
    settings: CreativeSettings,
    assets: Mapping[AssetKind, str],
    outline: Sequence[OutlineEntry],
) -> str:
    """Context for chapter writing: settings, generated assets and the whole outline."""

    lines = [build_context(settings), "--- 已生成设定 (Generated Assets) ---"]
    for kind in AUX_ASSET_KINDS:
        lines.append(f"{_ASSET_LABELS[kind]}: {_or_placeholder(assets.get(kind), NOT_GENERATED)}")
    lines.append("--- 完整大纲 (Full Outline) ---")
    lines.extend(
        f"Chapter {number}: {entry.title} (Beat: {entry.beat})"
        for number, entry in enumerate(outline, start=1)
    )
    return "\n".join(lines)


def resolve_author_style(choice: Choice) -> str:
    """Name of the author whose style the chapter should imitate.

    Bundled styles use the part of the label before ``" | "``; a custom style
    is passed through as typed.
    """

    if isinstance(choice, CustomChoice):
        text = choice.resolve()
        if text:
            return text
        return _short_style_name(AuthorStyle.DEFAULT.value)
    return _short_style_name(choice.resolve())


def _short_style_name(label: str) -> str:
    return label.split(" | ")[0]


def _resolve_choice(choice: Choice) -> str:
    if isinstance(choice, FixedChoice):
        return choice.resolve()
    return _or_placeholder(choice.resolve(), NOT_PROVIDED)


def _length_label(settings: CreativeSettings) -> str:
    length = settings.length
    return _or_placeholder(getattr(length, "value", length), NOT_PROVIDED)


def _or_placeholder(value: Optional[str], placeholder: str) -> str:
    text = (value or "").strip()
    return text or placeholder


class ContextValidationError(ValueError):
    """Raised when the settings are not complete enough to send any request."""


TITLE_REQUIRED_MESSAGE = "请输入小说标题 | Please enter a novel title."


def require_title(settings: CreativeSettings) -> None:
    if not settings.has_title:
        raise ContextValidationError(TITLE_REQUIRED_MESSAGE)
