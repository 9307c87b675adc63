import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from outline_studio import create_app
from outline_studio.config import TestConfig
from outline_studio.extensions import workspaces
from outline_studio.models import AssetKind
from outline_studio.services import generation
from outline_studio.services.outline_edits import delete_chapter


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    workspaces.reset()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


class DummyGenerator:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def generate_response(self, prompt: str, **kwargs: object) -> str:
        self.calls.append(prompt)
        return self.handler(prompt, **kwargs)


@pytest.fixture
def install_generator(monkeypatch):
    def install(handler):
        generator = DummyGenerator(handler)
        monkeypatch.setattr(generation, "_get_text_generator", lambda: generator)
        return generator

    return install


def _outline_json(count, prefix="第"):
    return json.dumps(
        {"outline": [{"title": f"{prefix}{i}章", "beat": f"节拍{i}"} for i in range(1, count + 1)]},
        ensure_ascii=False,
    )


def _save_settings(client, **overrides):
    data = {
        "title": "星辰之战",
        "length": "LONG",
        "theme": "FANTASY",
        "custom_theme": "",
        "character": "GENIUS",
        "custom_character": "",
        "plot": "SYSTEM",
        "custom_plot": "",
        "author_style": "DEFAULT",
        "custom_author_style": "",
        "world_background": "",
        "power_system": "",
        "unique_setting": "",
        "chapter_count": "15",
    }
    data.update(overrides)
    return client.post("/settings", data=data, follow_redirects=True)


def _state(client):
    return client.get("/workspace").get_json()


def _seed_outline(client, install_generator, count=4):
    install_generator(lambda prompt, **_: _outline_json(count))
    response = client.post("/outline/generate", json={"chapter_count": count})
    assert response.status_code == 200
    return response.get_json()["outline"]


def test_index_renders_settings_form(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "小说标题".encode() in response.data


def test_generate_outline_end_to_end(client, install_generator):
    _save_settings(client)
    generator = install_generator(lambda prompt, **_: _outline_json(15))

    response = client.post("/outline/generate")

    assert response.status_code == 200
    outline = _state(client)["outline"]
    assert len(outline) == 15
    assert [entry["title"] for entry in outline] == [f"第{i}章" for i in range(1, 16)]
    assert len(generator.calls) == 1
    assert "星辰之战" in generator.calls[0]
    assert "东方奇幻" in generator.calls[0]
    assert "前 15 章" in generator.calls[0]


def test_generate_outline_without_title_issues_no_request(client, install_generator):
    _save_settings(client, title="")
    generator = install_generator(lambda prompt, **_: _outline_json(15))

    response = client.post("/outline/generate")

    assert response.status_code == 400
    assert response.get_json()["error"] == "请输入小说标题 | Please enter a novel title."
    assert generator.calls == []
    assert _state(client)["outline"] == []


def test_synopsis_failure_leaves_previous_value(client, install_generator):
    _save_settings(client)
    client.put("/assets/synopsis", json={"content": "旧的梗概"})

    def failing(prompt, **_):
        raise RuntimeError("HTTP 500 from upstream")

    install_generator(failing)

    response = client.post("/assets/synopsis/generate")

    assert response.status_code == 502
    assert "Failed to generate" in response.get_json()["error"]
    assert "HTTP 500" not in response.get_json()["error"]
    state = _state(client)
    assert state["assets"]["synopsis"] == "旧的梗概"
    assert state["busy"] == []


def test_slot_is_busy_only_while_request_runs(client, install_generator):
    _save_settings(client)
    seen = []

    def handler(prompt, **_):
        seen.append(workspaces.current().is_busy("asset:synopsis"))
        return "一句话梗概"

    install_generator(handler)

    response = client.post("/assets/synopsis/generate")

    assert response.status_code == 200
    assert seen == [True]
    state = _state(client)
    assert state["assets"]["synopsis"] == "一句话梗概"
    assert state["active_content"] == "synopsis"
    assert state["busy"] == []


def test_busy_slot_rejects_duplicate_request(client, install_generator):
    _save_settings(client)
    generator = install_generator(lambda prompt, **_: "故事钩子")
    with client.session_transaction() as flask_session:
        workspace = workspaces.get(flask_session["workspace_id"])

    with workspace.claim("asset:synopsis"):
        busy = client.post("/assets/synopsis/generate")
        other = client.post("/assets/story_hook/generate")

    assert busy.status_code == 409
    assert busy.get_json()["slot"] == "asset:synopsis"
    assert other.status_code == 200
    assert len(generator.calls) == 1
    assert _state(client)["busy"] == []


def test_full_worldview_uses_existing_synopsis(client, install_generator):
    _save_settings(client)
    client.put("/assets/synopsis", json={"content": "少年觉醒星辰血脉"})
    generator = install_generator(lambda prompt, **_: "完整世界观")

    response = client.post("/assets/full_worldview/generate")

    assert response.status_code == 200
    assert "少年觉醒星辰血脉" in generator.calls[0]


def test_regenerate_replaces_only_target(client, install_generator):
    _save_settings(client)
    before = _seed_outline(client, install_generator, count=4)
    install_generator(lambda prompt, **_: json.dumps({"title": "新章", "beat": "新节拍"}, ensure_ascii=False))

    response = client.post("/outline/chapters/2/regenerate")

    assert response.status_code == 200
    after = _state(client)["outline"]
    assert after[2] == {"title": "新章", "beat": "新节拍"}
    assert [entry for i, entry in enumerate(after) if i != 2] == [entry for i, entry in enumerate(before) if i != 2]


def test_suggest_beat_updates_beat_only(client, install_generator):
    _save_settings(client)
    before = _seed_outline(client, install_generator, count=3)
    install_generator(lambda prompt, **_: "主角被迫在众目睽睽下出手。")

    response = client.post("/outline/chapters/0/beat")

    assert response.status_code == 200
    after = _state(client)["outline"]
    assert after[0] == {"title": before[0]["title"], "beat": "主角被迫在众目睽睽下出手。"}
    assert after[1:] == before[1:]


def test_generate_more_requires_outline_and_appends(client, install_generator):
    _save_settings(client)
    generator = install_generator(lambda prompt, **_: _outline_json(2, prefix="续"))

    empty = client.post("/outline/more", json={"chapter_count": 2})
    assert empty.status_code == 400
    assert generator.calls == []

    _seed_outline(client, install_generator, count=2)
    install_generator(lambda prompt, **_: _outline_json(2, prefix="续"))
    response = client.post("/outline/more", json={"chapter_count": 2})

    assert response.status_code == 200
    titles = [entry["title"] for entry in _state(client)["outline"]]
    assert titles == ["第1章", "第2章", "续1章", "续2章"]


def test_opening_outline_replaces_outline(client, install_generator):
    _save_settings(client)
    _seed_outline(client, install_generator, count=5)
    install_generator(lambda prompt, **_: _outline_json(3, prefix="开篇"))

    response = client.post("/outline/opening")

    assert response.status_code == 200
    assert len(_state(client)["outline"]) == 3


def test_malformed_outline_response_keeps_previous_outline(client, install_generator):
    _save_settings(client)
    before = _seed_outline(client, install_generator, count=2)
    install_generator(lambda prompt, **_: json.dumps({"outline": "oops"}))

    response = client.post("/outline/generate", json={"chapter_count": 2})

    assert response.status_code == 502
    assert _state(client)["outline"] == before


def test_manual_outline_edits(client):
    assert client.post("/outline/chapters").status_code == 201
    client.post("/outline/chapters")
    client.post("/outline/chapters")

    response = client.patch("/outline/chapters/1", json={"title": "改名", "beat": ""})
    assert response.status_code == 200

    response = client.delete("/outline/chapters/0")
    assert response.status_code == 200
    outline = _state(client)["outline"]
    assert outline == [
        {"title": "改名", "beat": ""},
        {"title": "新章节 3", "beat": "新的节拍"},
    ]

    assert client.delete("/outline/chapters/5").status_code == 404
    assert client.patch("/outline/chapters/0", json={"title": 3}).status_code == 400


def test_write_chapter_uses_full_context_and_custom_style(client, install_generator):
    _save_settings(client, author_style="custom", custom_author_style="古龙式短句")
    _seed_outline(client, install_generator, count=2)
    client.put("/assets/golden_finger", json={"content": "因果天书"})
    captured = {}

    def handler(prompt, **kwargs):
        captured.update(kwargs)
        return "正文内容"

    install_generator(handler)

    response = client.post("/outline/chapters/1/write")

    assert response.status_code == 200
    system_instruction = captured["system_instruction"]
    assert "**古龙式短句**" in system_instruction
    assert "因果天书" in system_instruction
    assert "Chapter 2: 第2章 (Beat: 节拍2)" in system_instruction
    state = _state(client)
    assert state["assets"]["chapter"] == "正文内容"
    assert state["selected_chapter"] == 1


def test_unknown_asset_kind_is_404(client):
    assert client.post("/assets/epilogue/generate").status_code == 404
    assert client.post("/assets/chapter/generate").status_code == 404


def _workspace(client):
    with client.session_transaction() as flask_session:
        return workspaces.get(flask_session["workspace_id"])


def test_busy_chapter_slot_leaves_selection_alone(client, install_generator):
    _save_settings(client)
    _seed_outline(client, install_generator, count=3)
    generator = install_generator(lambda prompt, **_: "正文")
    assert client.post("/outline/chapters/0/write").status_code == 200
    workspace = _workspace(client)
    workspace.active_content = AssetKind.SYNOPSIS

    with workspace.claim("chapter"):
        response = client.post("/outline/chapters/2/write")

    assert response.status_code == 409
    state = _state(client)
    assert state["selected_chapter"] == 0
    assert state["active_content"] == "synopsis"
    assert len(generator.calls) == 1


def test_regenerate_does_not_overwrite_shifted_chapter(client, install_generator):
    _save_settings(client)
    before = _seed_outline(client, install_generator, count=4)

    def handler(prompt, **_):
        workspace = workspaces.current()
        workspace.outline = delete_chapter(workspace.outline, 0)
        return json.dumps({"title": "新章", "beat": "新节拍"}, ensure_ascii=False)

    install_generator(handler)

    response = client.post("/outline/chapters/2/regenerate")

    assert response.status_code == 409
    assert _state(client)["outline"] == before[1:]


def test_suggest_beat_does_not_overwrite_shifted_chapter(client, install_generator):
    _save_settings(client)
    before = _seed_outline(client, install_generator, count=3)

    def handler(prompt, **_):
        workspace = workspaces.current()
        workspace.outline = delete_chapter(workspace.outline, 0)
        return "新的节拍建议"

    install_generator(handler)

    response = client.post("/outline/chapters/1/beat")

    assert response.status_code == 409
    assert _state(client)["outline"] == before[1:]


@pytest.mark.parametrize("action, slot", [("regenerate", "regenerate:1"), ("beat", "beat:1")])
def test_per_chapter_slots_are_independent(client, install_generator, action, slot):
    _save_settings(client)
    _seed_outline(client, install_generator, count=3)
    install_generator(lambda prompt, **_: json.dumps({"title": "新章", "beat": "新节拍"}, ensure_ascii=False))
    workspace = _workspace(client)

    with workspace.claim(slot):
        busy = client.post(f"/outline/chapters/1/{action}")
        other = client.post(f"/outline/chapters/2/{action}")

    assert busy.status_code == 409
    assert busy.get_json()["slot"] == slot
    assert other.status_code == 200
    assert _state(client)["busy"] == []


def test_non_object_json_bodies_are_rejected(client, install_generator):
    _save_settings(client)
    generator = install_generator(lambda prompt, **_: _outline_json(2))
    client.post("/outline/chapters")

    assert client.post("/outline/generate", json=[2]).status_code == 400
    assert client.put("/assets/synopsis", json=["梗概"]).status_code == 400
    assert client.patch("/outline/chapters/0", json=["title"]).status_code == 400
    assert generator.calls == []


def test_missing_title_is_reported_before_chapter_count(client, install_generator):
    _save_settings(client, title="")
    install_generator(lambda prompt, **_: _outline_json(1))

    response = client.post("/outline/generate", json={"chapter_count": 0})

    assert response.status_code == 400
    assert response.get_json()["error"] == "请输入小说标题 | Please enter a novel title."


def test_last_error_is_recorded_and_cleared(client, install_generator):
    _save_settings(client)

    def failing(prompt, **_):
        raise RuntimeError("timeout")

    install_generator(failing)
    client.post("/assets/story_hook/generate")
    assert "Failed to generate" in _state(client)["last_error"]

    install_generator(lambda prompt, **_: "钩子")
    client.post("/assets/story_hook/generate")
    assert _state(client)["last_error"] is None


def test_unexpected_error_is_logged_and_slot_released(client, monkeypatch, caplog):
    _save_settings(client)

    def broken(kind, context, *, synopsis=None):
        raise KeyError("boom")

    monkeypatch.setattr(generation, "generate_asset", broken)

    response = client.post("/assets/synopsis/generate")

    assert response.status_code == 500
    assert "boom" not in response.get_json()["error"]
    assert "Unhandled error" in caplog.text
    assert _state(client)["busy"] == []


def test_chapter_count_limits_follow_config(app_instance, client):
    app_instance.config["DEFAULT_CHAPTER_COUNT"] = 7
    app_instance.config["MAX_CHAPTER_COUNT"] = 20

    client.get("/workspace")
    assert _workspace(client).settings.chapter_count == 7

    _save_settings(client, chapter_count="30")
    assert _workspace(client).settings.chapter_count == 7

    _save_settings(client, chapter_count="20")
    assert _workspace(client).settings.chapter_count == 20
