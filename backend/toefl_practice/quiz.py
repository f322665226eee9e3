"""Multiple-choice quiz scoring and result summaries.

Questions are plain dicts as stored on a task: `text`, `options`,
`correct_answer`, `explanation` and `type`. An answer is the selected
option index, or -1 when the question was left unanswered.
"""

import math
from typing import Callable, List, Optional, Sequence

UNANSWERED = -1


def correct_index(question: dict) -> int:
    """Return the correct option index of a stored or provider question."""
    value = question.get("correct_answer", question.get("correctAnswer"))
    return int(value) if value is not None else UNANSWERED


def score_answers(questions: Sequence[dict], answers: Sequence[int]) -> int:
    """Count the answers that match each question's correct index."""
    return sum(
        1 for question, answer in zip(questions, answers)
        if answer != UNANSWERED and answer == correct_index(question)
    )


def percentage(score: int, total: int) -> int:
    """Score as a whole percentage, halves rounded up; 0 for an empty quiz."""
    if total <= 0:
        return 0
    return int(math.floor(score / total * 100 + 0.5))


def score_badge(pct: int) -> str:
    if pct >= 80:
        return "Excellent!"
    if pct >= 60:
        return "Good Job!"
    return "Keep Practicing"


def summarize(questions: Sequence[dict], answers: Sequence[int], score: Optional[int] = None) -> dict:
    """Build the results screen payload.

    `score` defaults to a fresh count; pass the stored score to render a
    saved result exactly as it was recorded.
    """
    if score is None:
        score = score_answers(questions, answers)
    total = len(questions)
    pct = percentage(score, total)
    items = []
    for idx, question in enumerate(questions):
        options = question.get("options") or []
        answer = answers[idx] if idx < len(answers) else UNANSWERED
        right = correct_index(question)
        items.append({
            "index": idx,
            "text": question.get("text"),
            "type": question.get("type"),
            "your_answer": options[answer] if 0 <= answer < len(options) else "Not answered",
            "correct_answer": options[right] if 0 <= right < len(options) else None,
            "correct": answer != UNANSWERED and answer == right,
            "explanation": question.get("explanation", ""),
        })
    return {
        "score": score,
        "total": total,
        "percentage": pct,
        "badge": score_badge(pct),
        "items": items,
    }


def validate_answers(questions: Sequence[dict], answers: Sequence[int]) -> None:
    """Raise ValueError when `answers` cannot belong to `questions`."""
    if len(answers) != len(questions):
        raise ValueError(f"expected {len(questions)} answers, got {len(answers)}")
    for idx, (question, answer) in enumerate(zip(questions, answers)):
        options = question.get("options") or []
        if answer != UNANSWERED and not 0 <= answer < len(options):
            raise ValueError(f"answer {idx + 1} is out of range")


class QuizRunner:
    """Step through a quiz one question at a time.

    Selections are only stored when moving with `next()`. Moving past the
    last question scores the quiz and calls `on_complete(answers, score)`;
    that happens once per runner no matter how often `next()` is called.
    """

    def __init__(self, questions: Sequence[dict], on_complete: Callable[[List[int], int], None]):
        if not questions:
            raise ValueError("quiz has no questions")
        self.questions = list(questions)
        self.answers: List[int] = [UNANSWERED] * len(self.questions)
        self.current = 0
        self.selected = UNANSWERED
        self.completed = False
        self._on_complete = on_complete

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def is_last(self) -> bool:
        return self.current == self.total - 1

    @property
    def progress(self) -> float:
        return (self.current + 1) / self.total * 100

    def select(self, option: int) -> None:
        options = self.questions[self.current].get("options") or []
        if not 0 <= option < len(options):
            raise ValueError("option out of range")
        self.selected = option

    def next(self) -> bool:
        """Advance; return True when this call completed the quiz."""
        if self.completed:
            return False
        if self.selected == UNANSWERED:
            raise ValueError("select an answer first")
        self.answers[self.current] = self.selected
        if not self.is_last:
            self.current += 1
            self.selected = self.answers[self.current]
            return False
        self.completed = True
        self._on_complete(list(self.answers), score_answers(self.questions, self.answers))
        return True

    def previous(self) -> None:
        if self.current > 0:
            self.current -= 1
            self.selected = self.answers[self.current]

    def state(self) -> dict:
        """What the quiz screen renders; the correct index is not exposed."""
        question = self.questions[self.current]
        return {
            "current": self.current,
            "total": self.total,
            "progress": round(self.progress, 2),
            "selected": self.selected,
            "is_last": self.is_last,
            "question": {
                "text": question.get("text"),
                "options": question.get("options") or [],
                "type": question.get("type"),
            },
        }
