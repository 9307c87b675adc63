from __future__ import annotations

from typing import Callable, TypeVar

from flask import (
    abort,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from werkzeug.exceptions import HTTPException

from ..extensions import workspaces
from ..models import AUX_ASSET_KINDS, AssetKind, OutlineEntry
from ..services import generation
from ..services.context import (
    ContextValidationError,
    build_chapter_context,
    build_context,
    require_title,
    resolve_author_style,
)
from ..services.generation import GenerationError
from ..services.outline_edits import (
    EDITABLE_FIELDS,
    append_chapter,
    delete_chapter,
    extend_outline,
    replace_chapter,
    update_chapter_field,
)
from ..workspace import (
    CHAPTER_SLOT,
    MORE_CHAPTERS_SLOT,
    OPENING_SLOT,
    OUTLINE_SLOT,
    SlotBusyError,
    Workspace,
    asset_slot,
    beat_slot,
    regenerate_slot,
)
from . import bp
from .forms import CreativeSettingsForm

T = TypeVar("T")

ASSET_LABELS = {
    AssetKind.CHAPTER: "章节内容",
    AssetKind.SYNOPSIS: "一句话梗概",
    AssetKind.STORY_HOOK: "故事钩子",
    AssetKind.GOLDEN_FINGER: "金手指",
    AssetKind.CORE_SETTING: "核心设定",
    AssetKind.CHARACTER_PROFILES: "人物设定",
    AssetKind.FULL_WORLDVIEW: "完整世界观",
}

FAILURE_MESSAGES = {
    OUTLINE_SLOT: "生成大纲失败，请重试。| Failed to generate outline. Please try again.",
    OPENING_SLOT: "生成开篇大纲失败，请重试。| Failed to generate opening outline. Please try again.",
    MORE_CHAPTERS_SLOT: "生成后续章节失败，请重试。| Failed to generate more chapters. Please try again.",
    CHAPTER_SLOT: "生成章节内容失败，请重试。| Failed to generate chapter content. Please try again.",
    "regenerate": "重新生成章节失败，请重试。| Failed to regenerate chapter. Please try again.",
    "beat": "节拍建议失败，请重试。| Failed to suggest beat. Please try again.",
    "asset": "生成失败，请重试。| Failed to generate. Please try again.",
}
OUTLINE_REQUIRED_MESSAGE = "请先生成大纲。| Generate an outline first."
CHAPTER_NOT_FOUND_MESSAGE = "未找到该章节。| Chapter not found."
OUTLINE_CHANGED_MESSAGE = "大纲已变更，请重试。| The outline changed while generating. Please try again."
INVALID_CHAPTER_COUNT_MESSAGE = "章节数量无效。| Invalid chapter count."
INVALID_PAYLOAD_MESSAGE = "请求内容必须是 JSON 对象。| The request body must be a JSON object."
UNEXPECTED_ERROR_MESSAGE = "发生意外错误，请重试。| Something went wrong. Please try again."


@bp.errorhandler(ContextValidationError)
def handle_validation_error(exc: ContextValidationError):
    return jsonify({"error": str(exc)}), 400


@bp.errorhandler(SlotBusyError)
def handle_slot_busy(exc: SlotBusyError):
    return jsonify({"error": "请求进行中，请稍候。| A request is already in progress.", "slot": exc.slot}), 409


@bp.errorhandler(404)
def handle_not_found(exc):
    return jsonify({"error": getattr(exc, "description", None) or CHAPTER_NOT_FOUND_MESSAGE}), 404


@bp.errorhandler(Exception)
def handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception("Unhandled error while serving %s", request.path)
    return jsonify({"error": UNEXPECTED_ERROR_MESSAGE}), 500


def _run_generation(workspace: Workspace, slot: str, request_fn: Callable[[str], T]) -> T:
    """Validate, claim ``slot`` and run one request with the current context block."""

    require_title(workspace.settings)
    with workspace.claim(slot):
        result = request_fn(build_context(workspace.settings))
    workspace.last_error = None
    return result


def _failure(workspace: Workspace, message: str):
    workspace.last_error = message
    return jsonify({"error": message}), 502


def _json_object():
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _outline_payload(workspace: Workspace) -> list:
    return [entry.to_dict() for entry in workspace.outline]


def _check_chapter(workspace: Workspace, index: int) -> None:
    if not 0 <= index < len(workspace.outline):
        abort(404, description=CHAPTER_NOT_FOUND_MESSAGE)


def _still_at(workspace: Workspace, index: int, entry: OutlineEntry) -> bool:
    return index < len(workspace.outline) and workspace.outline[index] is entry


def _asset_kind_or_404(kind: str) -> AssetKind:
    try:
        return AssetKind(kind)
    except ValueError:
        abort(404, description=f"Unknown content kind: {kind}")


def _requested_chapter_count(workspace: Workspace):
    payload = _json_object()
    if payload is None:
        return None
    raw = payload.get("chapter_count", workspace.settings.chapter_count)
    try:
        count = int(raw)
    except (TypeError, ValueError):
        return None
    max_count = current_app.config.get("MAX_CHAPTER_COUNT", 100)
    if not 1 <= count <= max_count:
        return None
    return count


# ---------------------------------------------------------------------------
# Page and settings
# ---------------------------------------------------------------------------


@bp.route("/")
def index():
    workspace = workspaces.current()
    view = request.args.get("view")
    if view:
        workspace.active_content = _asset_kind_or_404(view)

    form = CreativeSettingsForm()
    form.load_settings(workspace.settings)
    return render_template(
        "studio/index.html",
        workspace=workspace,
        form=form,
        asset_labels=ASSET_LABELS,
        aux_kinds=AUX_ASSET_KINDS,
    )


@bp.route("/settings", methods=["POST"])
def update_settings():
    workspace = workspaces.current()
    form = CreativeSettingsForm()
    if form.validate_on_submit():
        workspace.settings = form.to_settings()
        flash("设定已保存。| Settings saved.", "success")
    else:
        for field_name, errors in form.errors.items():
            for error in errors:
                flash(f"{getattr(form, field_name).label.text}: {error}", "danger")
    return redirect(url_for("studio.index"))


@bp.route("/workspace", methods=["GET"])
def workspace_state():
    return jsonify(workspaces.current().to_dict())


# ---------------------------------------------------------------------------
# Outline generation
# ---------------------------------------------------------------------------


@bp.route("/outline/generate", methods=["POST"])
def generate_outline():
    workspace = workspaces.current()
    require_title(workspace.settings)
    chapter_count = _requested_chapter_count(workspace)
    if chapter_count is None:
        return jsonify({"error": INVALID_CHAPTER_COUNT_MESSAGE}), 400

    try:
        entries = _run_generation(
            workspace,
            OUTLINE_SLOT,
            lambda context: generation.generate_outline(context, chapter_count),
        )
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES[OUTLINE_SLOT])

    workspace.outline = entries
    workspace.selected_chapter = None
    workspace.assets.pop(AssetKind.CHAPTER, None)
    current_app.logger.info("Outline generated with %d chapters", len(entries))
    return jsonify({"outline": _outline_payload(workspace)})


@bp.route("/outline/opening", methods=["POST"])
def generate_opening():
    workspace = workspaces.current()
    try:
        entries = _run_generation(workspace, OPENING_SLOT, generation.generate_opening_outline)
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES[OPENING_SLOT])

    workspace.outline = entries
    workspace.selected_chapter = None
    return jsonify({"outline": _outline_payload(workspace)})


@bp.route("/outline/more", methods=["POST"])
def generate_more():
    workspace = workspaces.current()
    require_title(workspace.settings)
    if not workspace.outline:
        return jsonify({"error": OUTLINE_REQUIRED_MESSAGE}), 400
    chapter_count = _requested_chapter_count(workspace)
    if chapter_count is None:
        return jsonify({"error": INVALID_CHAPTER_COUNT_MESSAGE}), 400

    existing = list(workspace.outline)
    try:
        entries = _run_generation(
            workspace,
            MORE_CHAPTERS_SLOT,
            lambda context: generation.generate_more_chapters(context, chapter_count, existing),
        )
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES[MORE_CHAPTERS_SLOT])

    workspace.outline = extend_outline(workspace.outline, entries)
    return jsonify({"outline": _outline_payload(workspace), "added": len(entries)})


# ---------------------------------------------------------------------------
# Outline edits
# ---------------------------------------------------------------------------


@bp.route("/outline/chapters", methods=["POST"])
def add_chapter():
    workspace = workspaces.current()
    workspace.outline = append_chapter(workspace.outline)
    return jsonify({"outline": _outline_payload(workspace)}), 201


@bp.route("/outline/chapters/<int:index>", methods=["PATCH"])
def edit_chapter(index: int):
    workspace = workspaces.current()
    _check_chapter(workspace, index)
    payload = _json_object()
    if payload is None:
        return jsonify({"error": INVALID_PAYLOAD_MESSAGE}), 400

    updates = {name: payload[name] for name in EDITABLE_FIELDS if name in payload}
    if not updates:
        return jsonify({"error": "Provide a title or beat to update."}), 400
    if not all(isinstance(value, str) for value in updates.values()):
        return jsonify({"error": "Title and beat must be strings."}), 400

    outline = workspace.outline
    for field_name, value in updates.items():
        outline = update_chapter_field(outline, index, field_name, value)
    workspace.outline = outline
    return jsonify({"index": index, "chapter": outline[index].to_dict()})


@bp.route("/outline/chapters/<int:index>", methods=["DELETE"])
def remove_chapter(index: int):
    workspace = workspaces.current()
    _check_chapter(workspace, index)
    workspace.outline = delete_chapter(workspace.outline, index)

    selected = workspace.selected_chapter
    if selected is not None:
        if selected == index:
            workspace.selected_chapter = None
        elif selected > index:
            workspace.selected_chapter = selected - 1
    return jsonify({"outline": _outline_payload(workspace)})


@bp.route("/outline/chapters/<int:index>/regenerate", methods=["POST"])
def regenerate(index: int):
    workspace = workspaces.current()
    _check_chapter(workspace, index)
    snapshot = list(workspace.outline)
    target = snapshot[index]
    try:
        entry = _run_generation(
            workspace,
            regenerate_slot(index),
            lambda context: generation.regenerate_chapter(context, snapshot, index),
        )
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES["regenerate"])

    if not _still_at(workspace, index, target):
        return jsonify({"error": OUTLINE_CHANGED_MESSAGE}), 409
    workspace.outline = replace_chapter(workspace.outline, index, entry)
    return jsonify({"index": index, "chapter": entry.to_dict()})


@bp.route("/outline/chapters/<int:index>/beat", methods=["POST"])
def suggest_beat(index: int):
    workspace = workspaces.current()
    _check_chapter(workspace, index)
    snapshot = list(workspace.outline)
    target = snapshot[index]
    try:
        beat = _run_generation(
            workspace,
            beat_slot(index),
            lambda context: generation.suggest_beat(context, snapshot, index),
        )
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES["beat"])

    if not _still_at(workspace, index, target):
        return jsonify({"error": OUTLINE_CHANGED_MESSAGE}), 409
    workspace.outline = update_chapter_field(workspace.outline, index, "beat", beat)
    return jsonify({"index": index, "chapter": workspace.outline[index].to_dict()})


@bp.route("/outline/chapters/<int:index>/write", methods=["POST"])
def write_chapter(index: int):
    workspace = workspaces.current()
    _check_chapter(workspace, index)
    require_title(workspace.settings)
    chapter = workspace.outline[index]

    full_context = build_chapter_context(workspace.settings, workspace.assets, workspace.outline)
    author_style = resolve_author_style(workspace.settings.author_style)
    try:
        with workspace.claim(CHAPTER_SLOT):
            content = generation.generate_chapter_content(full_context, chapter.title, chapter.beat, author_style)
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES[CHAPTER_SLOT])

    workspace.assets[AssetKind.CHAPTER] = content
    workspace.selected_chapter = index
    workspace.active_content = AssetKind.CHAPTER
    workspace.last_error = None
    return jsonify({"index": index, "title": chapter.title, "content": content})


# ---------------------------------------------------------------------------
# Generated assets
# ---------------------------------------------------------------------------


@bp.route("/assets/<kind>/generate", methods=["POST"])
def generate_asset(kind: str):
    workspace = workspaces.current()
    asset_kind = _asset_kind_or_404(kind)
    if asset_kind not in AUX_ASSET_KINDS:
        abort(404, description=f"{asset_kind.value} is written from the outline, not generated here.")

    synopsis = workspace.asset(AssetKind.SYNOPSIS)
    try:
        content = _run_generation(
            workspace,
            asset_slot(asset_kind),
            lambda context: generation.generate_asset(asset_kind, context, synopsis=synopsis),
        )
    except GenerationError:
        return _failure(workspace, FAILURE_MESSAGES["asset"])

    workspace.assets[asset_kind] = content
    workspace.active_content = asset_kind
    return jsonify({"kind": asset_kind.value, "content": content})


@bp.route("/assets/<kind>", methods=["PUT"])
def edit_asset(kind: str):
    workspace = workspaces.current()
    asset_kind = _asset_kind_or_404(kind)
    payload = _json_object()
    if payload is None:
        return jsonify({"error": INVALID_PAYLOAD_MESSAGE}), 400
    content = payload.get("content")
    if not isinstance(content, str):
        return jsonify({"error": "Content must be a string."}), 400

    workspace.assets[asset_kind] = content
    return jsonify({"kind": asset_kind.value, "content": content})
