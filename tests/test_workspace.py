import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from outline_studio.models import AssetKind, OutlineEntry
from outline_studio.workspace import (
    SlotBusyError,
    Workspace,
    asset_slot,
    beat_slot,
    regenerate_slot,
)


def test_claim_sets_and_clears_flag():
    workspace = Workspace()

    with workspace.claim("outline"):
        assert workspace.is_busy("outline")

    assert not workspace.is_busy("outline")


def test_claim_clears_flag_when_request_fails():
    workspace = Workspace()

    with pytest.raises(RuntimeError):
        with workspace.claim(asset_slot(AssetKind.SYNOPSIS)):
            raise RuntimeError("upstream failed")

    assert not workspace.is_busy("asset:synopsis")
    with workspace.claim("asset:synopsis"):
        pass


def test_same_slot_cannot_be_claimed_twice():
    workspace = Workspace()

    with workspace.claim(regenerate_slot(3)):
        with pytest.raises(SlotBusyError) as excinfo:
            with workspace.claim("regenerate:3"):
                pass
        assert excinfo.value.slot == "regenerate:3"
        assert workspace.is_busy("regenerate:3")


def test_different_slots_are_independent():
    workspace = Workspace()

    with workspace.claim(regenerate_slot(1)):
        with workspace.claim(beat_slot(1)):
            with workspace.claim(regenerate_slot(2)):
                assert workspace.to_dict()["busy"] == ["beat:1", "regenerate:1", "regenerate:2"]

    assert workspace.to_dict()["busy"] == []


def test_to_dict_lists_every_asset_kind():
    workspace = Workspace(outline=[OutlineEntry("觉醒", "激励事件")])
    workspace.assets[AssetKind.STORY_HOOK] = "雨夜，棺材自己打开了。"

    state = workspace.to_dict()

    assert state["outline"] == [{"title": "觉醒", "beat": "激励事件"}]
    assert set(state["assets"]) == {kind.value for kind in AssetKind}
    assert state["assets"]["story_hook"] == "雨夜，棺材自己打开了。"
    assert state["assets"]["synopsis"] == ""
