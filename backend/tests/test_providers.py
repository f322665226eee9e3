import base64
import json

import httpx
import pytest

from toefl_practice import content, tts
from toefl_practice.errors import ConfigurationError, ProviderError
from toefl_practice.utils.provider_stats import get_provider_stats
from conftest import CONVERSATION, LECTURE, READING, FakeLLM, FakeTTS, make_questions


def test_generate_sends_json_mode_chat_request():
    llm = FakeLLM(LECTURE)
    out = llm.client().generate("lecture")
    assert out["title"] == "The Water Cycle"
    body = llm.requests[0]
    assert body["model"] == "test-model"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["role"] == "system"
    assert "650-750 words" in body["messages"][0]["content"]


def test_generate_writing_requires_writing_type():
    with pytest.raises(ValueError):
        FakeLLM().client().generate("writing")
    with pytest.raises(ValueError):
        FakeLLM().client().generate("speaking")


def test_missing_api_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        FakeLLM(LECTURE).client(api_key="").generate("lecture")


def test_gateway_error_becomes_provider_error_and_is_recorded():
    before = get_provider_stats()["providers"]["llm"]["failed_calls"]
    llm = FakeLLM(httpx.Response(429, text="slow down"))
    with pytest.raises(ProviderError) as exc:
        llm.client().generate("conversation")
    assert "429" in str(exc.value)
    assert get_provider_stats()["providers"]["llm"]["failed_calls"] == before + 1


def test_fenced_json_content_is_accepted():
    fenced = httpx.Response(200, json={"choices": [{"message": {"content": "```json\n" + json.dumps(READING) + "\n```"}}]})
    assert FakeLLM(fenced).client().generate("reading")["title"] == "Coral Reefs"


def test_non_json_content_is_provider_error():
    garbage = httpx.Response(200, json={"choices": [{"message": {"content": "Sure! Here is your lecture."}}]})
    with pytest.raises(ProviderError):
        FakeLLM(garbage).client().generate("lecture")


def test_transport_failure_is_provider_error():
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    client = content.ContentClient("k", "https://llm.test/v1", "m", transport=httpx.MockTransport(boom))
    with pytest.raises(ProviderError):
        client.generate("lecture")


def test_normalize_conversation_replaces_html_breaks():
    fields = content.normalize_quiz_content(CONVERSATION, "conversation")
    assert "<br>" not in fields["transcript"]
    assert fields["transcript"].splitlines()[1].startswith("Librarian:")
    assert fields["questions"][0]["correct_answer"] == 1


def test_normalize_reading_uses_passage():
    fields = content.normalize_quiz_content(READING, "reading")
    assert fields["transcript"].startswith("Coral reefs")


def test_normalize_rejects_bad_correct_answer():
    bad = dict(LECTURE, questions=make_questions(1, correct=4))
    with pytest.raises(ProviderError):
        content.normalize_quiz_content(bad, "lecture")
    with pytest.raises(ProviderError):
        content.normalize_quiz_content({"title": "x", "transcript": "y", "questions": []}, "lecture")


def test_normalize_writing_requires_material():
    with pytest.raises(ProviderError):
        content.normalize_writing_content({"title": "t"}, "integrated")
    out = content.normalize_writing_content({"prompt": "Agree or disagree?"}, "independent")
    assert out["title"] == "Independent Writing"
    assert out["content"]["prompt"] == "Agree or disagree?"


def test_correction_prompt_embeds_material():
    prompt = content.build_correction_prompt("integrated", "my answer", reading_passage="READ", lecture_summary="LECT")
    assert "READ" in prompt and "LECT" in prompt and "150-225" in prompt
    assert "300-350" in content.build_correction_prompt("independent", "x", prompt="P")


def test_speech_client_uses_task_voice_and_returns_base64():
    fake = FakeTTS(audio=b"mp3-bytes")
    audio_b64 = fake.client().synthesize("Hello there", "lecture")
    assert base64.b64decode(audio_b64) == b"mp3-bytes"
    request = fake.requests[0]
    assert request.url.path.endswith(tts.LECTURE_VOICE)
    assert request.headers["xi-api-key"] == "tts-key"
    assert json.loads(request.content)["voice_settings"] == {"stability": 0.5, "similarity_boost": 0.75}

    fake.client().synthesize("Hi", "conversation")
    assert fake.requests[1].url.path.endswith(tts.CONVERSATION_VOICE)
    fake.client().synthesize("Hi", "lecture", voice_id="custom")
    assert fake.requests[2].url.path.endswith("/custom")


def test_speech_client_errors():
    with pytest.raises(ConfigurationError):
        FakeTTS().client(api_key="").synthesize("hi")
    with pytest.raises(ProviderError):
        FakeTTS(status=401).client().synthesize("hi")
    assert tts.as_data_url("QUJD") == "data:audio/mpeg;base64,QUJD"
