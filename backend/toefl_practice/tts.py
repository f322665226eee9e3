"""Text-to-speech client (ElevenLabs).

Returns base64-encoded MPEG audio. When this provider is unavailable the
task is stored without audio and the browser reads the transcript with
its own speech engine (see `playback`).
"""

import base64
import logging
from typing import Optional

import httpx

from .config import settings
from .errors import ConfigurationError, ProviderError
from .utils.provider_stats import track_call

logger = logging.getLogger("toefl.tts")

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
LECTURE_VOICE = "pNInz6obpgDQGcFmaJgB"  # Adam: clear, academic
CONVERSATION_VOICE = "9BWtsMINqrJLrRacOk9x"  # Aria
VOICE_SETTINGS = {"stability": 0.5, "similarity_boost": 0.75}


def default_voice(task_type: str) -> str:
    return LECTURE_VOICE if task_type == "lecture" else CONVERSATION_VOICE


def as_data_url(audio_b64: str) -> str:
    return f"data:audio/mpeg;base64,{audio_b64}"


class SpeechClient:
    def __init__(self, api_key: str, model: str = "eleven_turbo_v2_5", timeout: float = 60.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.BaseTransport] = None) -> "SpeechClient":
        return cls(settings.ELEVENLABS_API_KEY, settings.TTS_MODEL, settings.TTS_TIMEOUT_SECONDS, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def synthesize(self, text: str, task_type: str = "lecture", voice_id: Optional[str] = None) -> str:
        """Synthesize `text` and return the audio as a base64 string."""
        if not self.api_key:
            raise ConfigurationError("ELEVENLABS_API_KEY not configured")
        if not text or not text.strip():
            raise ValueError("text must not be empty")
        voice = voice_id or default_voice(task_type)
        logger.info("Generating audio, length: %d taskType: %s", len(text), task_type)
        with track_call("tts", "synthesize", voice_id=voice, characters=len(text)):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.post(
                        ELEVENLABS_URL.format(voice_id=voice),
                        headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
                        json={"text": text, "model_id": self.model, "voice_settings": VOICE_SETTINGS},
                    )
            except httpx.HTTPError as exc:
                raise ProviderError(f"ElevenLabs unreachable: {exc}") from exc
            if not response.is_success:
                logger.error("ElevenLabs error: %s %s", response.status_code, response.text[:500])
                raise ProviderError(f"ElevenLabs API error: {response.status_code}")
            audio = response.content
            if not audio:
                raise ProviderError("ElevenLabs returned no audio")
        logger.info("Audio generated successfully, size: %d", len(audio))
        return base64.b64encode(audio).decode("ascii")
