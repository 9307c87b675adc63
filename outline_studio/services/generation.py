"""Requests to the generative-text API, one function per creative artifact.

Every function takes the context block produced by
:func:`outline_studio.services.context.build_context` plus its own arguments,
renders a prompt from the configured templates and performs exactly one call.
Free-text artifacts come back as stripped text. Outline data is requested with
a strict JSON schema and validated here before anything reaches the caller.

Any failure (transport, API error, empty or malformed response) is logged and
re-raised as :class:`GenerationError`. Nothing is retried.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, NoReturn, Optional, Sequence, Tuple

from flask import current_app

from api_handler import OpenAIUnifiedGenerator

from ..models import AssetKind, OutlineEntry
from ..prompt_templates import PROMPT_TEMPLATES, render_style_guides

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_INSTANCE_KEY = "_TEXT_GENERATOR_INSTANCE"
GENERATION_FAILED_MESSAGE = "生成失败，请重试。| Failed to generate. Please try again."

OPENING_CHAPTER_COUNT = 3
NO_CHAPTER = "无"
FIRST_CHAPTER_BEAT = "这是第一章"
NOT_YET_GENERATED = "尚未生成"
REGENERATE_MARKER = "<-- (本章需要重写)"


class GenerationError(RuntimeError):
    """Raised when a generation request fails for any reason."""


CHAPTER_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "title": {
            "type": "string",
            "description": "一个引人入胜的中文章节标题，与前后章节衔接自然。",
        },
        "beat": {
            "type": "string",
            "description": "对此章节的故事节拍进行简短描述，确保其在整个故事结构中的作用清晰且必要。",
        },
    },
    "required": ["title", "beat"],
}

OUTLINE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "outline": {
            "type": "array",
            "description": "A list of chapter objects.",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "title": {
                        "type": "string",
                        "description": "一个引人入胜的中文章节标题。",
                    },
                    "beat": {
                        "type": "string",
                        "description": (
                            "遵循雪花写作法和三幕剧结构，对此章节的故事节拍进行简短描述"
                            "（例如：“激励事件”、“第一个转折点”、“中点”、“一败涂地”）。"
                        ),
                    },
                },
                "required": ["title", "beat"],
            },
        }
    },
    "required": ["outline"],
}


# ---------------------------------------------------------------------------
# Outline requests
# ---------------------------------------------------------------------------


def generate_outline(context: str, chapter_count: int) -> List[OutlineEntry]:
    """Opening chapters of a long novel: setup, protagonist, inciting incident."""

    _check_chapter_count(chapter_count)
    return _request_outline("outline", chapter_count, context=context, chapter_count=str(chapter_count))


def generate_more_chapters(
    context: str,
    chapter_count: int,
    outline: Sequence[OutlineEntry],
) -> List[OutlineEntry]:
    """Next ``chapter_count`` chapters, continuing from the last existing one."""

    _check_chapter_count(chapter_count)
    listing = "\n".join(
        f"第 {number} 章: {entry.title} (节拍: {entry.beat})" for number, entry in enumerate(outline, start=1)
    )
    return _request_outline(
        "more_chapters",
        chapter_count,
        context=context,
        chapter_count=str(chapter_count),
        outline_listing=listing,
    )


def generate_opening_outline(context: str) -> List[OutlineEntry]:
    """The first three chapters, each ending on a cliffhanger."""

    return _request_outline("opening_outline", OPENING_CHAPTER_COUNT, context=context)


def regenerate_chapter(context: str, outline: Sequence[OutlineEntry], index: int) -> OutlineEntry:
    """A replacement for ``outline[index]`` that fits its neighbours."""

    _check_index(outline, index)
    current = outline[index]
    previous_entry = outline[index - 1] if index > 0 else None
    next_entry = outline[index + 1] if index < len(outline) - 1 else None

    listing = "\n".join(
        f"第 {number} 章: {entry.title} ({entry.beat}){' ' + REGENERATE_MARKER if number == index + 1 else ''}"
        for number, entry in enumerate(outline, start=1)
    )
    prompt, system_instruction, parameters = _render(
        "regenerate_chapter",
        context=context,
        outline_listing=listing,
        chapter_number=str(index + 1),
        previous_number=str(index),
        next_number=str(index + 2),
        previous_title=previous_entry.title if previous_entry else NO_CHAPTER,
        next_title=next_entry.title if next_entry else NO_CHAPTER,
        current_title=current.title,
        current_beat=current.beat,
    )
    raw = _call_generator(
        "regenerate_chapter",
        prompt,
        system_instruction,
        parameters,
        response_schema=CHAPTER_SCHEMA,
        schema_name="chapter",
    )
    data = _decode_json("regenerate_chapter", raw)
    entry = _parse_entry(data)
    if entry is None:
        _reject("regenerate_chapter", "response is not an object with string 'title' and 'beat'", raw)
    return entry


def suggest_beat(context: str, outline: Sequence[OutlineEntry], index: int) -> str:
    """A sharper beat for ``outline[index]``, returned as plain text."""

    _check_index(outline, index)
    current = outline[index]
    previous_entry = outline[index - 1] if index > 0 else None
    listing = "\n".join(
        f"第 {number} 章: {entry.title} ({entry.beat})"
        for number, entry in enumerate(outline[: index + 1], start=1)
    )
    prompt, system_instruction, parameters = _render(
        "suggest_beat",
        context=context,
        outline_listing=listing,
        chapter_number=str(index + 1),
        current_title=current.title,
        current_beat=current.beat,
        previous_beat=previous_entry.beat if previous_entry else FIRST_CHAPTER_BEAT,
    )
    text = _call_generator("suggest_beat", prompt, system_instruction, parameters)
    beat = _strip_wrapping_quotes(text)
    if not beat:
        _reject("suggest_beat", "suggested beat is empty", text)
    return beat


# ---------------------------------------------------------------------------
# Free-text assets
# ---------------------------------------------------------------------------


def generate_synopsis(context: str) -> str:
    return _request_text("synopsis", context=context)


def generate_story_hook(context: str) -> str:
    return _request_text("story_hook", context=context)


def generate_golden_finger(context: str) -> str:
    return _request_text("golden_finger", context=context)


def generate_core_setting(context: str) -> str:
    return _request_text("core_setting", context=context)


def generate_character_profiles(context: str) -> str:
    return _request_text("character_profiles", context=context)


def generate_full_worldview(context: str, synopsis: Optional[str] = None) -> str:
    """Full worldview document; folds in the synopsis when one exists."""

    return _request_text(
        "full_worldview",
        context=context,
        synopsis=(synopsis or "").strip() or NOT_YET_GENERATED,
    )


def generate_chapter_content(
    full_context: str,
    chapter_title: str,
    chapter_beat: str,
    author_style: str,
) -> str:
    """Prose for one chapter, written in ``author_style``.

    ``full_context`` is the chapter context (settings, generated assets and
    the whole outline). ``author_style`` is the resolved style name; custom
    styles arrive as their free-text label.
    """

    prompt, system_instruction, parameters = _render(
        "chapter_content",
        context=full_context,
        author_style=author_style,
        style_guides=render_style_guides(),
        chapter_title=chapter_title,
        chapter_beat=chapter_beat,
    )
    return _call_generator("chapter_content", prompt, system_instruction, parameters)


_ASSET_GENERATORS: Dict[AssetKind, Callable[[str], str]] = {
    AssetKind.SYNOPSIS: generate_synopsis,
    AssetKind.STORY_HOOK: generate_story_hook,
    AssetKind.GOLDEN_FINGER: generate_golden_finger,
    AssetKind.CORE_SETTING: generate_core_setting,
    AssetKind.CHARACTER_PROFILES: generate_character_profiles,
}


def generate_asset(kind: AssetKind, context: str, *, synopsis: Optional[str] = None) -> str:
    """Dispatch an auxiliary asset request by kind."""

    if kind is AssetKind.FULL_WORLDVIEW:
        return generate_full_worldview(context, synopsis)
    try:
        generator = _ASSET_GENERATORS[kind]
    except KeyError as exc:
        raise ValueError(f"{kind!r} is not generated from the context alone") from exc
    return generator(context)


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _request_text(key: str, **values: str) -> str:
    prompt, system_instruction, parameters = _render(key, **values)
    return _call_generator(key, prompt, system_instruction, parameters)


def _request_outline(key: str, expected_count: int, **values: str) -> List[OutlineEntry]:
    prompt, system_instruction, parameters = _render(key, **values)
    raw = _call_generator(
        key,
        prompt,
        system_instruction,
        parameters,
        response_schema=OUTLINE_SCHEMA,
        schema_name="outline",
    )
    data = _decode_json(key, raw)
    if not isinstance(data, dict) or "outline" not in data:
        _reject(key, "response has no 'outline' field", raw)
    items = data["outline"]
    if not isinstance(items, list):
        _reject(key, "'outline' is not an array", raw)

    entries: List[OutlineEntry] = []
    for item in items:
        entry = _parse_entry(item)
        if entry is None:
            _reject(key, "an outline item is missing a string 'title' or 'beat'", raw)
        entries.append(entry)

    if len(entries) < expected_count:
        _reject(key, f"expected {expected_count} chapters, got {len(entries)}", raw)
    if len(entries) > expected_count:
        current_app.logger.warning(
            "Generation request '%s' returned %d chapters; keeping the first %d.",
            key,
            len(entries),
            expected_count,
        )
        entries = entries[:expected_count]
    return entries


def _parse_entry(item: Any) -> Optional[OutlineEntry]:
    if not isinstance(item, dict):
        return None
    title = item.get("title")
    beat = item.get("beat")
    if not isinstance(title, str) or not isinstance(beat, str):
        return None
    return OutlineEntry(title=title.strip(), beat=beat.strip())


_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _decode_json(key: str, raw: str) -> Any:
    text = raw.strip()
    match = _CODE_FENCE.match(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        current_app.logger.warning(
            "Generation request '%s' returned invalid JSON (%s): %s", key, exc.msg, _shorten(raw)
        )
        raise GenerationError(GENERATION_FAILED_MESSAGE) from exc


def _reject(key: str, reason: str, raw: str) -> NoReturn:
    current_app.logger.warning("Generation request '%s' rejected: %s. Response: %s", key, reason, _shorten(raw))
    raise GenerationError(GENERATION_FAILED_MESSAGE)


_QUOTE_PAIRS = (('"', '"'), ("“", "”"), ("「", "」"), ("'", "'"))


def _strip_wrapping_quotes(text: str) -> str:
    stripped = text.strip()
    for opening, closing in _QUOTE_PAIRS:
        if len(stripped) >= 2 and stripped.startswith(opening) and stripped.endswith(closing):
            return stripped[len(opening):-len(closing)].strip()
    return stripped


def _call_generator(
    key: str,
    prompt: str,
    system_instruction: Optional[str],
    parameters: Dict[str, Any],
    *,
    response_schema: Optional[Dict[str, Any]] = None,
    schema_name: str = "structured_output",
) -> str:
    generator = _get_text_generator()
    if generator is None:
        current_app.logger.warning("Generation request '%s' skipped: no text generator is configured.", key)
        raise GenerationError(GENERATION_FAILED_MESSAGE)

    kwargs = _extract_generation_parameters(parameters)
    if response_schema is not None:
        kwargs["response_schema"] = response_schema
        kwargs["schema_name"] = schema_name

    try:
        text = generator.generate_response(prompt, system_instruction=system_instruction, **kwargs)
    except Exception as exc:
        current_app.logger.exception("Generation request '%s' failed", key)
        raise GenerationError(GENERATION_FAILED_MESSAGE) from exc

    text = text.strip() if isinstance(text, str) else ""
    if not text:
        current_app.logger.warning("Generation request '%s' returned an empty response.", key)
        raise GenerationError(GENERATION_FAILED_MESSAGE)
    return text


def _render(key: str, **values: str) -> Tuple[str, Optional[str], Dict[str, Any]]:
    entry = _load_prompt_entry(key)
    prompt_template = entry.get("prompt_template")
    if not prompt_template:
        raise GenerationError(f"Prompt configuration entry '{key}' is missing the template text.")
    prompt = _apply_template(prompt_template, **values)

    system_template = entry.get("system_instruction")
    system_instruction = _apply_template(system_template, **values) if system_template else None

    parameters = entry.get("parameters")
    return prompt, system_instruction, parameters if isinstance(parameters, dict) else {}


_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _apply_template(template: str, **values: str) -> str:
    # Single pass, so user text containing "{name}" is never substituted again.
    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        raw = values[key]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER.sub(substitute, template)


_GENERATION_PARAMETER_KEYS = {"max_new_tokens", "temperature", "top_p"}
_MODEL_CONFIG_KEYS = {"default": "GENERATION_MODEL", "chapter": "CHAPTER_MODEL"}


def _extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to kwargs understood by the generator."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]

    config_key = _MODEL_CONFIG_KEYS.get(parameters.get("model") or "default")
    model = current_app.config.get(config_key) if config_key else None
    if model:
        kwargs["model"] = model
    return kwargs


def _load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    entry = config.get(key)
    if not isinstance(entry, dict):
        raise GenerationError(f"Prompt configuration is missing the '{key}' entry.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    """Bundled templates, overridden key by key from ``PROMPT_CONFIG_PATH`` when set."""

    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    data: Dict[str, Any] = {key: dict(entry) for key, entry in PROMPT_TEMPLATES.items()}

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise GenerationError(f"Prompt configuration file not found at: {path}")
        with path.open("r", encoding="utf-8") as fh:
            try:
                overrides = json.load(fh)
            except json.JSONDecodeError as exc:
                raise GenerationError(f"Unable to parse prompt configuration: {exc.msg}") from exc
        if not isinstance(overrides, dict):
            raise GenerationError("Prompt configuration must be a JSON object.")
        for key, entry in overrides.items():
            if isinstance(entry, dict):
                data[key] = {**data.get(key, {}), **entry}
        app.logger.info("Loaded %d prompt overrides from %s", len(overrides), path)

    app.config[PROMPT_CACHE_KEY] = data
    return data


def _get_text_generator() -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if GENERATOR_INSTANCE_KEY in app.config:
        return app.config[GENERATOR_INSTANCE_KEY]

    api_key = app.config.get("OPENAI_API_KEY")
    if not api_key:
        app.logger.info("OPENAI_API_KEY not configured; generation requests will fail.")
        app.config[GENERATOR_INSTANCE_KEY] = None
        return None

    try:
        generator = OpenAIUnifiedGenerator(
            model_name=app.config.get("GENERATION_MODEL", ""),
            api_key=api_key,
            default_max_tokens=app.config.get("GENERATION_MAX_TOKENS", 4096),
            base_url=app.config.get("OPENAI_BASE_URL"),
        )
        app.logger.info("Initialised OpenAI generator: model=%s key=%s", *generator.signature())
    except ValueError as exc:
        app.logger.warning("Failed to initialise the OpenAI generator: %s", exc)
        generator = None
    app.config[GENERATOR_INSTANCE_KEY] = generator
    return generator


def _check_chapter_count(chapter_count: int) -> None:
    if chapter_count < 1:
        raise ValueError("chapter_count must be at least 1")


def _check_index(outline: Sequence[OutlineEntry], index: int) -> None:
    if not 0 <= index < len(outline):
        raise IndexError(f"Chapter index {index} is out of range for an outline of {len(outline)} entries")


def _shorten(text: str, limit: int = 500) -> str:
    text = text.replace("\n", " ")
    return (text[:limit] + "…") if len(text) > limit else text
