import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from api_handler import OpenAIUnifiedGenerator


class RecordingEndpoint:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def _chat_response(content):
    message = SimpleNamespace(content=content, refusal=None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def generator():
    return OpenAIUnifiedGenerator(model_name="gpt-4o-mini", api_key="sk-test-key-1234")


def test_chat_path_sends_system_instruction_and_schema(generator):
    endpoint = RecordingEndpoint(_chat_response(' {"title": "t", "beat": "b"} '))
    generator._client = SimpleNamespace(chat=SimpleNamespace(completions=endpoint))
    schema = {"type": "object"}

    text = generator.generate_response(
        "prompt",
        system_instruction="system",
        response_schema=schema,
        schema_name="chapter",
        temperature=0.7,
    )

    assert text == '{"title": "t", "beat": "b"}'
    call = endpoint.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "prompt"},
    ]
    assert call["temperature"] == 0.7
    assert call["response_format"]["json_schema"] == {"name": "chapter", "strict": True, "schema": schema}


def test_model_override_routes_to_responses_api(generator):
    endpoint = RecordingEndpoint(SimpleNamespace(output_text="章节正文"))
    generator._client = SimpleNamespace(responses=endpoint)

    text = generator.generate_response("prompt", system_instruction="system", model="gpt-5", temperature=0.7)

    assert text == "章节正文"
    call = endpoint.calls[0]
    assert call["model"] == "gpt-5"
    assert call["instructions"] == "system"
    assert "temperature" not in call
    assert "text" not in call


def test_empty_chat_response_raises(generator):
    generator._client = SimpleNamespace(chat=SimpleNamespace(completions=RecordingEndpoint(_chat_response(""))))

    with pytest.raises(RuntimeError):
        generator.generate_response("prompt")


def test_rejects_blank_prompt_and_missing_key(generator):
    with pytest.raises(ValueError):
        generator.generate_response("   ")
    with pytest.raises(ValueError):
        OpenAIUnifiedGenerator(model_name="gpt-4o-mini", api_key="")


def test_signature_redacts_key(generator):
    assert generator.signature() == ("gpt-4o-mini", "sk-t…1234")
