"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Tasks and user results are inserted once and read back; there is no
update path for either table.
"""

from typing import Optional, List
from uuid import uuid4
from sqlmodel import SQLModel, Field, Column, JSON
from datetime import datetime, timezone


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Task(SQLModel, table=True):
    """A generated practice exercise.

    `task_type` is one of `lecture`, `conversation`, `reading` or
    `writing`. `audio_url` holds a base64 data URL when TTS succeeded and
    is `None` when the browser speech engine must read the transcript.
    Writing tasks keep their prompt fields in `content`.
    """
    __tablename__ = "tasks"

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    task_type: str = Field(index=True)
    title: str
    transcript: str = ""
    audio_url: Optional[str] = None
    questions: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    content: dict = Field(default_factory=dict, sa_column=Column(JSON))
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UserResult(SQLModel, table=True):
    """A stored quiz outcome: selected option indices and the score."""
    __tablename__ = "user_results"

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    user_answers: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    score: int = 0
    total_questions: int = 0
    user_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
