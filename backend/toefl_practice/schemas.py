"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers, provider payloads and tests.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional

QuizTaskType = Literal["lecture", "conversation", "reading"]
ContentTaskType = Literal["lecture", "conversation", "reading", "writing"]
WritingType = Literal["integrated", "independent"]


class RegisterIn(BaseModel):
    """Payload for user registration/login endpoints."""
    username: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class GeneratedQuestion(BaseModel):
    """A multiple-choice question as returned by the content provider.

    The provider speaks camelCase (`correctAnswer`); both spellings are
    accepted on input.
    """
    model_config = ConfigDict(populate_by_name=True)

    text: str
    options: List[str]
    correct_answer: int = Field(alias="correctAnswer")
    explanation: str = ""
    type: str = "detail"


class ContentRequest(BaseModel):
    """Request for raw generated content."""
    task_type: ContentTaskType
    writing_type: Optional[WritingType] = None


class AudioRequest(BaseModel):
    """Request for synthesized speech."""
    text: str = Field(min_length=1)
    task_type: str = "lecture"
    voice_id: Optional[str] = None


class TaskGenerateRequest(BaseModel):
    """Request to generate and store a quiz-bearing task."""
    task_type: QuizTaskType


class WritingCorrectionRequest(BaseModel):
    """A writing response with the material it answers."""
    user_response: str
    writing_type: WritingType
    prompt: Optional[str] = None
    reading_passage: Optional[str] = None
    lecture_summary: Optional[str] = None


class ResultSubmission(BaseModel):
    """Selected option index per question; -1 marks an unanswered question."""
    answers: List[int]


class QuizSelection(BaseModel):
    option: int = Field(ge=0)


class PlayerAction(BaseModel):
    """Browser-speech player control; `position` is a 0-1 fraction for seek."""
    action: Literal["play", "pause", "resume", "stop", "seek", "status"]
    position: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class WritingTaskRequest(BaseModel):
    writing_type: WritingType


class WritingSubmission(BaseModel):
    response: str
