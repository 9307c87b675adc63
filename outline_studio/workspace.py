"""In-memory studio state, one workspace per browser session.

Nothing here is persisted: restarting the server starts every writer over.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from flask import Flask, current_app, session

from .models import AssetKind, CreativeSettings, OutlineEntry

SESSION_KEY = "workspace_id"

OUTLINE_SLOT = "outline"
OPENING_SLOT = "opening"
MORE_CHAPTERS_SLOT = "more_chapters"
CHAPTER_SLOT = "chapter"


def regenerate_slot(index: int) -> str:
    return f"regenerate:{index}"


def beat_slot(index: int) -> str:
    return f"beat:{index}"


def asset_slot(kind: AssetKind) -> str:
    return f"asset:{kind.value}"


class SlotBusyError(RuntimeError):
    """Raised when a request is started for a slot that already has one in flight."""

    def __init__(self, slot: str) -> None:
        super().__init__(f"A request for '{slot}' is already in progress.")
        self.slot = slot


@dataclass
class Workspace:
    settings: CreativeSettings = field(default_factory=CreativeSettings)
    outline: List[OutlineEntry] = field(default_factory=list)
    assets: Dict[AssetKind, str] = field(default_factory=dict)
    active_content: AssetKind = AssetKind.CHAPTER
    selected_chapter: Optional[int] = None
    busy: Dict[str, bool] = field(default_factory=dict)
    last_error: Optional[str] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def is_busy(self, slot: str) -> bool:
        return self.busy.get(slot, False)

    @contextmanager
    def claim(self, slot: str) -> Iterator[None]:
        """Mark ``slot`` as in flight for the duration of the block.

        The flag is always cleared on exit, whether the block succeeds or raises.
        """

        with self._lock:
            if self.busy.get(slot):
                raise SlotBusyError(slot)
            self.busy[slot] = True
        try:
            yield
        finally:
            with self._lock:
                self.busy[slot] = False

    def asset(self, kind: AssetKind) -> str:
        return self.assets.get(kind, "")

    def to_dict(self) -> dict:
        return {
            "title": self.settings.title,
            "outline": [entry.to_dict() for entry in self.outline],
            "assets": {kind.value: self.asset(kind) for kind in AssetKind},
            "active_content": self.active_content.value,
            "selected_chapter": self.selected_chapter,
            "busy": sorted(slot for slot, flag in self.busy.items() if flag),
            "last_error": self.last_error,
        }


class WorkspaceStore:
    """Flask extension mapping a session id to its :class:`Workspace`."""

    def __init__(self, app: Optional[Flask] = None) -> None:
        self._workspaces: Dict[str, Workspace] = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["workspace_store"] = self

    def current(self) -> Workspace:
        """Workspace of the current browser session, created on first use."""

        workspace_id = session.get(SESSION_KEY)
        with self._lock:
            if workspace_id and workspace_id in self._workspaces:
                return self._workspaces[workspace_id]
            workspace_id = uuid.uuid4().hex
            workspace = Workspace(
                settings=CreativeSettings(chapter_count=current_app.config.get("DEFAULT_CHAPTER_COUNT", 15))
            )
            self._workspaces[workspace_id] = workspace
        session[SESSION_KEY] = workspace_id
        return workspace

    def get(self, workspace_id: str) -> Optional[Workspace]:
        with self._lock:
            return self._workspaces.get(workspace_id)

    def reset(self) -> None:
        with self._lock:
            self._workspaces.clear()
