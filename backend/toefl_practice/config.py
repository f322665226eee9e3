"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    LLM_API_KEY: str
    LLM_BASE_URL: str
    LLM_MODEL: str
    LLM_TIMEOUT_SECONDS: float
    ELEVENLABS_API_KEY: str
    TTS_MODEL: str
    TTS_TIMEOUT_SECONDS: float
    GENERATION_RATE_LIMIT: int
    GENERATION_RATE_WINDOW_SECONDS: int
    TASK_JOB_MAX_JOBS: int
    TASK_JOB_TTL_SECONDS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        # LOVABLE_API_KEY is the gateway key name used by older deployments
        self.LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("LOVABLE_API_KEY", "")
        self.LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://ai.gateway.lovable.dev/v1").rstrip("/")
        self.LLM_MODEL = os.getenv("LLM_MODEL", "google/gemini-2.5-flash")
        self.LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))
        self.ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
        self.TTS_MODEL = os.getenv("TTS_MODEL", "eleven_turbo_v2_5")
        self.TTS_TIMEOUT_SECONDS = float(os.getenv("TTS_TIMEOUT_SECONDS", "60"))
        self.GENERATION_RATE_LIMIT = int(os.getenv("GENERATION_RATE_LIMIT", "10"))
        self.GENERATION_RATE_WINDOW_SECONDS = int(os.getenv("GENERATION_RATE_WINDOW_SECONDS", "60"))
        self.TASK_JOB_MAX_JOBS = int(os.getenv("TASK_JOB_MAX_JOBS", "200"))
        self.TASK_JOB_TTL_SECONDS = int(os.getenv("TASK_JOB_TTL_SECONDS", "3600"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.GENERATION_RATE_LIMIT < 1:
            raise RuntimeError("GENERATION_RATE_LIMIT must be >= 1")


settings = Settings()
