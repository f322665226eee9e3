import json
import os
import tempfile
import uuid
from pathlib import Path

import httpx
import pytest

# Point the app at throwaway storage before `toefl_practice` is imported.
_TMP = Path(tempfile.mkdtemp(prefix="toefl-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["PROVIDER_STATS_DIR"] = str(_TMP / "provider_stats")
os.environ["LLM_API_KEY"] = ""
os.environ["LOVABLE_API_KEY"] = ""
os.environ["ELEVENLABS_API_KEY"] = ""
os.environ["GENERATION_RATE_LIMIT"] = "1000"

from fastapi.testclient import TestClient  # noqa: E402

from toefl_practice import main  # noqa: E402
from toefl_practice.content import ContentClient  # noqa: E402
from toefl_practice.tts import SpeechClient  # noqa: E402


def make_questions(n=3, correct=0):
    return [
        {
            "text": f"Question {i + 1}?",
            "options": ["A) one", "B) two", "C) three", "D) four"],
            "correctAnswer": correct,
            "explanation": f"Because of point {i + 1}.",
            "type": "detail",
        }
        for i in range(n)
    ]


LECTURE = {
    "title": "The Water Cycle",
    "transcript": "Today we will talk about evaporation. " * 30,
    "questions": make_questions(3),
}
CONVERSATION = {
    "title": "Library Fines",
    "transcript": "Student: Hi, I have a question about a fine.<br>Librarian: Sure, what happened?\nStudent: I returned the book late.",
    "questions": make_questions(2, correct=1),
}
READING = {
    "title": "Coral Reefs",
    "passage": "Coral reefs are diverse.\nThey are also fragile.",
    "questions": make_questions(2, correct=2),
}
INTEGRATED = {
    "title": "Bird Migration",
    "readingPassage": "Birds navigate by the sun.\nThey also use landmarks.",
    "lectureSummary": "The professor disagrees with each point.",
    "question": "Summarize the points made in the lecture.",
}
INDEPENDENT = {
    "title": "Working From Home",
    "prompt": "Do you agree that working from home is better than working in an office?",
    "sampleResponse": "I agree.",
}
CORRECTION = {
    "scores": {"content": 4, "organization": 4, "grammar": 3, "style": 4, "overall": 3.8},
    "strengths": ["Clear thesis"],
    "weaknesses": ["Some article errors"],
    "suggestions": ["Vary sentence openings"],
    "rewriteSuggestion": "An improved essay.",
}


def chat_response(payload) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(payload)}}]})


class FakeLLM:
    """Chat-completions stand-in that answers from a queue of payloads."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if not self.payloads:
            return httpx.Response(500, text="no more fake payloads")
        payload = self.payloads.pop(0)
        if isinstance(payload, httpx.Response):
            return payload
        return chat_response(payload)

    def client(self, api_key="test-key"):
        return ContentClient(api_key, "https://llm.test/v1", "test-model", transport=httpx.MockTransport(self))


class FakeTTS:
    def __init__(self, status=200, audio=b"ID3fake-mpeg"):
        self.status = status
        self.audio = audio
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, text="quota exceeded")
        return httpx.Response(200, content=self.audio)

    def client(self, api_key="tts-key"):
        return SpeechClient(api_key, transport=httpx.MockTransport(self))


@pytest.fixture(scope="session")
def client():
    return TestClient(main.app)


@pytest.fixture
def auth_headers(client):
    username = f"user-{uuid.uuid4().hex[:8]}"
    r = client.post("/auth/register", json={"username": username, "password": "pw123"})
    assert r.status_code == 200
    r = client.post("/auth/login", json={"username": username, "password": "pw123"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def use_providers():
    """Install fake provider clients for the duration of one test."""
    installed = {}

    def install(llm=None, tts=None):
        if llm is not None:
            main.app.dependency_overrides[main.get_content_client] = lambda: llm.client()
            installed["llm"] = llm
        if tts is not None:
            main.app.dependency_overrides[main.get_speech_client] = lambda: tts.client()
            installed["tts"] = tts
        return installed

    yield install
    main.app.dependency_overrides.clear()
