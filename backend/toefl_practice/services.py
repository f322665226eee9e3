"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
the provider clients. Services perform validation, run the generation
pipeline and persist rows via repositories; they raise domain exceptions
and leave HTTP status codes to the controllers.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, quiz, repositories, writing
from .config import settings
from .content import ContentClient, normalize_quiz_content, normalize_writing_content
from .errors import ConfigurationError, NotFoundError, ProviderError
from .tts import SpeechClient, as_data_url

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
LISTENING_TYPES = ("lecture", "conversation")
QUIZ_TYPES = ("lecture", "conversation", "reading")

logger = logging.getLogger("toefl.services")


def _no_report(stage: str) -> None:
    pass


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        if not username.strip() or not password:
            raise ValueError("username and password are required")
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username.strip(), password_hash=hashed)
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username.strip())
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class TaskService:
    """Generate, store and load practice tasks."""
    def __init__(self, session: Session, content: Optional[ContentClient] = None,
                 speech: Optional[SpeechClient] = None):
        self.session = session
        self.content = content
        self.speech = speech
        self.task_repo = repositories.TaskRepository(session)

    def generate(self, user_id: int, task_type: str,
                 report: Callable[[str], None] = _no_report) -> models.Task:
        """Run the generation pipeline: content, then speech, then insert.

        Listening tasks whose speech synthesis fails are still stored, with
        no audio, and are read by the browser speech engine instead.
        """
        if task_type not in QUIZ_TYPES:
            raise ValueError(f"unsupported task type: {task_type}")
        report("generating content")
        fields = normalize_quiz_content(self.content.generate(task_type), task_type)

        audio_url = None
        speech = self.speech if task_type in LISTENING_TYPES else None
        if speech is not None and not speech.configured:
            logger.info("speech synthesis not configured, using browser speech")
        elif speech is not None:
            report("converting to speech")
            try:
                audio_url = as_data_url(speech.synthesize(fields["transcript"], task_type))
            except (ConfigurationError, ProviderError) as exc:
                logger.warning("speech synthesis unavailable, using browser speech: %s", exc)

        report("saving task")
        task = models.Task(task_type=task_type, audio_url=audio_url, user_id=user_id, **fields)
        created = self.task_repo.create(task)
        logger.info("task created id=%s type=%s audio=%s", created.id, task_type, bool(audio_url))
        return created

    def generate_writing(self, user_id: int, writing_type: str) -> models.Task:
        if writing_type not in writing.MIN_WORDS:
            raise ValueError(f"unknown writing type: {writing_type}")
        fields = normalize_writing_content(self.content.generate("writing", writing_type), writing_type)
        task = models.Task(task_type="writing", title=fields["title"], content=fields["content"], user_id=user_id)
        return self.task_repo.create(task)

    def get(self, task_id: str) -> models.Task:
        task = self.task_repo.get(task_id)
        if not task:
            raise NotFoundError(f"task not found: {task_id}")
        return task


class ResultService:
    """Score quizzes and persist `UserResult` rows."""
    def __init__(self, session: Session):
        self.session = session
        self.task_repo = repositories.TaskRepository(session)
        self.result_repo = repositories.ResultRepository(session)

    def record(self, user_id: int, task_id: str, answers: List[int], score: Optional[int] = None) -> dict:
        """Insert a result for `answers` and return the results payload.

        `score` is recomputed from the stored questions when omitted.
        """
        task = self.task_repo.get(task_id)
        if not task:
            raise NotFoundError(f"task not found: {task_id}")
        if task.task_type not in QUIZ_TYPES:
            raise ValueError("task has no quiz")
        questions = task.questions or []
        quiz.validate_answers(questions, answers)
        if score is None:
            score = quiz.score_answers(questions, answers)
        row = self.result_repo.create(models.UserResult(
            task_id=task.id,
            user_answers=list(answers),
            score=score,
            total_questions=len(questions),
            user_id=user_id,
        ))
        return {"result_id": row.id, "task_id": task.id, **quiz.summarize(questions, answers, score)}

    def history(self, user_id: int) -> List[dict]:
        out = []
        for r in self.result_repo.list_for_user(user_id):
            task = self.task_repo.get(r.task_id)
            out.append({
                "result_id": r.id,
                "task_id": r.task_id,
                "task_type": task.task_type if task else None,
                "title": task.title if task else None,
                "score": r.score,
                "total_questions": r.total_questions,
                "percentage": quiz.percentage(r.score, r.total_questions),
                "created_at": r.created_at.isoformat(),
            })
        return out


class WritingService:
    """Correct writing responses once they pass the word-count gate."""
    def __init__(self, content: ContentClient):
        self.content = content

    def correct(self, writing_type: str, user_response: str, *, prompt: Optional[str] = None,
                reading_passage: Optional[str] = None, lecture_summary: Optional[str] = None) -> dict:
        writing.check_word_count(user_response, writing_type)
        if writing_type == "integrated" and not (reading_passage and lecture_summary):
            raise ValueError("integrated correction needs the reading passage and lecture summary")
        if writing_type == "independent" and not prompt:
            raise ValueError("independent correction needs the prompt")
        raw = self.content.correct_writing(
            writing_type, user_response, prompt=prompt,
            reading_passage=reading_passage, lecture_summary=lecture_summary,
        )
        return writing.normalize_correction(raw, user_response, writing_type)

    def correct_task(self, task: models.Task, user_response: str) -> dict:
        content = task.content or {}
        return self.correct(
            content.get("writing_type"), user_response,
            prompt=content.get("prompt"),
            reading_passage=content.get("reading_passage"),
            lecture_summary=content.get("lecture_summary"),
        )
