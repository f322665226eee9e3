"""Per-user screen router for the practice UI.

One value says which screen is showing; transitions clear or restore the
few pieces of state the screens share (current task, quiz answers, score,
writing response). Flows live in memory only.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from . import quiz, writing
from .playback import SpeechPlayback


class Screen(str, Enum):
    HOME = "home"
    PLAYER = "player"
    QUIZ = "quiz"
    RESULTS = "results"
    WRITING_TASK = "writing_task"
    WRITING_RESULTS = "writing_results"


class FlowError(ValueError):
    """The requested action is not available on the current screen."""


def task_snapshot(task) -> dict:
    """Copy the fields the screens need off a `Task` row."""
    return {
        "id": task.id,
        "task_type": task.task_type,
        "title": task.title,
        "transcript": task.transcript,
        "audio_url": task.audio_url,
        "questions": list(task.questions or []),
        "content": dict(task.content or {}),
    }


class PracticeFlow:
    def __init__(self):
        self.screen = Screen.HOME
        self.task: Optional[dict] = None
        self.answers: List[int] = []
        self.score = 0
        self.runner: Optional[quiz.QuizRunner] = None
        self.playback: Optional[SpeechPlayback] = None
        self.writing_started_at: Optional[datetime] = None
        self.writing_response: Optional[str] = None
        self.correction: Optional[dict] = None

    def _require(self, *screens: Screen) -> None:
        if self.screen not in screens:
            allowed = ", ".join(s.value for s in screens)
            raise FlowError(f"not available on screen '{self.screen.value}' (needs {allowed})")
        if self.task is None:
            raise FlowError("no task is open")

    def _clear(self) -> None:
        self.task = None
        self.answers = []
        self.score = 0
        self.runner = None
        self.playback = None
        self.writing_started_at = None
        self.writing_response = None
        self.correction = None

    def open_task(self, task: dict) -> None:
        """Show the player (audio, browser speech or reading) for `task`."""
        if task["task_type"] == "writing":
            self.open_writing(task)
            return
        if not task.get("questions"):
            raise FlowError("task has no questions")
        self._clear()
        self.task = task
        if not task.get("audio_url") and task["task_type"] != "reading":
            self.playback = SpeechPlayback(task["transcript"])
        self.screen = Screen.PLAYER

    def player_action(self, action: str, position: Optional[float] = None) -> dict:
        self._require(Screen.PLAYER)
        if self.playback is None:
            raise FlowError("this task has no browser speech playback")
        if action == "seek":
            if position is None:
                raise FlowError("seek needs a position")
            self.playback.seek(position)
        elif action != "status":
            getattr(self.playback, action)()
        return self.playback.snapshot()

    def audio_complete(self) -> None:
        """Leave the player for the quiz (also the reading 'start questions')."""
        self._require(Screen.PLAYER)
        if self.playback is not None:
            self.playback.stop()
        if self.runner is None or self.runner.completed:
            self.runner = quiz.QuizRunner(self.task["questions"], self._finish_quiz)
        self.screen = Screen.QUIZ

    def back_to_player(self) -> None:
        self._require(Screen.QUIZ)
        self.screen = Screen.PLAYER

    def select(self, option: int) -> dict:
        self._require(Screen.QUIZ)
        self.runner.select(option)
        return self.runner.state()

    def next(self) -> bool:
        """Advance the quiz; True when this call finished it."""
        self._require(Screen.QUIZ)
        return self.runner.next()

    def previous(self) -> dict:
        self._require(Screen.QUIZ)
        self.runner.previous()
        return self.runner.state()

    def complete_quiz(self, answers: List[int]) -> int:
        """Finish the quiz in one call with a full answer list."""
        self._require(Screen.PLAYER, Screen.QUIZ)
        quiz.validate_answers(self.task["questions"], answers)
        self._finish_quiz(list(answers), quiz.score_answers(self.task["questions"], answers))
        return self.score

    def _finish_quiz(self, answers: List[int], score: int) -> None:
        self.answers = answers
        self.score = score
        self.screen = Screen.RESULTS

    def open_writing(self, task: dict) -> None:
        if task["task_type"] != "writing":
            raise FlowError("not a writing task")
        self._clear()
        self.task = task
        self.writing_started_at = datetime.now(timezone.utc)
        self.screen = Screen.WRITING_TASK

    def require_writing_task(self) -> dict:
        """Return the open writing task; FlowError unless its screen is showing."""
        self._require(Screen.WRITING_TASK)
        return self.task

    def submit_writing(self, response: str, correction: dict, task_id: Optional[str] = None) -> None:
        """Show `correction`; `task_id` guards against the task changing meanwhile."""
        self._require(Screen.WRITING_TASK)
        if task_id is not None and self.task["id"] != task_id:
            raise FlowError("the writing task changed while it was being corrected")
        self.writing_response = response
        self.correction = correction
        self.screen = Screen.WRITING_RESULTS

    def retry_writing(self) -> None:
        self._require(Screen.WRITING_RESULTS)
        self.writing_response = None
        self.correction = None
        self.writing_started_at = datetime.now(timezone.utc)
        self.screen = Screen.WRITING_TASK

    def restart(self) -> None:
        self._clear()
        self.screen = Screen.HOME

    def home(self) -> None:
        self.screen = Screen.HOME

    def view(self) -> dict:
        """Everything the current screen renders."""
        out: Dict[str, object] = {"screen": self.screen.value}
        task = self.task
        if self.screen == Screen.PLAYER:
            out["task"] = {k: task[k] for k in ("id", "task_type", "title", "transcript", "audio_url")}
            out["playback"] = self.playback.snapshot() if self.playback else None
        elif self.screen == Screen.QUIZ:
            out["task_id"] = task["id"]
            out["quiz"] = self.runner.state()
            if task["task_type"] == "reading":
                out["passage"] = [p for p in task["transcript"].split("\n") if p.strip()]
        elif self.screen == Screen.RESULTS:
            out["task_id"] = task["id"]
            out["results"] = quiz.summarize(task["questions"], self.answers, self.score)
        elif self.screen == Screen.WRITING_TASK:
            content = task["content"]
            out["task"] = {"id": task["id"], "title": task["title"], **content}
            out["limits"] = writing.word_limits(content["writing_type"])
            remaining = writing.time_remaining(self.writing_started_at, content["writing_type"])
            out["time_remaining"] = remaining
            out["clock"] = writing.format_clock(remaining)
        elif self.screen == Screen.WRITING_RESULTS:
            out["task_id"] = task["id"]
            out["response"] = self.writing_response
            out["correction"] = self.correction
        return out


class FlowStore:
    """Thread-safe in-memory flows keyed by user id."""

    def __init__(self):
        self._flows: Dict[int, PracticeFlow] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._lock = threading.Lock()

    @contextmanager
    def use(self, user_id: int):
        """Yield the user's flow while holding that user's lock."""
        with self._lock:
            flow = self._flows.setdefault(user_id, PracticeFlow())
            user_lock = self._locks.setdefault(user_id, threading.Lock())
        with user_lock:
            yield flow

    def clear(self) -> None:
        with self._lock:
            self._flows.clear()
            self._locks.clear()
