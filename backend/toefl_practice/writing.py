"""Writing task rules: word-count gate, timer and correction labels."""

import math
import re
from datetime import datetime, timezone
from typing import Optional

MIN_WORDS = {"integrated": 150, "independent": 300}
MAX_WORDS = {"integrated": 225, "independent": None}
TIME_LIMIT_SECONDS = {"integrated": 20 * 60, "independent": 30 * 60}
SCORE_KEYS = ("content", "organization", "grammar", "style", "overall")

_WHITESPACE = re.compile(r"\s+")


class WordCountError(ValueError):
    """Raised when a response is shorter than the task minimum."""

    def __init__(self, writing_type: str, count: int):
        self.writing_type = writing_type
        self.count = count
        self.minimum = MIN_WORDS[writing_type]
        super().__init__(f"write at least {self.minimum} words; current words: {count}")


def _check_type(writing_type: str) -> None:
    if writing_type not in MIN_WORDS:
        raise ValueError(f"unknown writing type: {writing_type}")


def count_words(text: Optional[str]) -> int:
    if not text:
        return 0
    return len([w for w in _WHITESPACE.split(text.strip()) if w])


def check_word_count(text: str, writing_type: str) -> int:
    """Return the word count, raising WordCountError below the minimum."""
    _check_type(writing_type)
    count = count_words(text)
    if count < MIN_WORDS[writing_type]:
        raise WordCountError(writing_type, count)
    return count


def word_limits(writing_type: str) -> dict:
    _check_type(writing_type)
    return {
        "min_words": MIN_WORDS[writing_type],
        "max_words": MAX_WORDS[writing_type],
        "time_limit_seconds": TIME_LIMIT_SECONDS[writing_type],
    }


def format_clock(seconds: float) -> str:
    """Render seconds as `m:ss`."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def time_remaining(started_at: datetime, writing_type: str, now: Optional[datetime] = None) -> int:
    """Seconds left on the writing timer, never below zero."""
    _check_type(writing_type)
    now = now or datetime.now(timezone.utc)
    elapsed = (now - started_at).total_seconds()
    return max(0, TIME_LIMIT_SECONDS[writing_type] - math.floor(elapsed))


def score_label(overall: float) -> str:
    if overall >= 4.5:
        return "Excellent"
    if overall >= 3.5:
        return "Good"
    if overall >= 2.5:
        return "Satisfactory"
    if overall >= 1.5:
        return "Needs Improvement"
    return "Insufficient"


def _as_score(value) -> float:
    try:
        return min(5.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def _as_list(value) -> list:
    if isinstance(value, list):
        return [str(v) for v in value if str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def normalize_correction(raw: dict, user_response: str, writing_type: str) -> dict:
    """Shape a provider correction into the writing results payload.

    Scores are clamped to 0-5, missing lists become empty, and `wordCount`
    falls back to counting the response when the model leaves it out.
    """
    scores_in = raw.get("scores") if isinstance(raw.get("scores"), dict) else {}
    scores = {key: _as_score(scores_in.get(key)) for key in SCORE_KEYS}
    word_count = raw.get("wordCount")
    if not isinstance(word_count, int) or word_count <= 0:
        word_count = count_words(user_response)
    return {
        "writing_type": writing_type,
        "scores": scores,
        "label": score_label(scores["overall"]),
        "strengths": _as_list(raw.get("strengths")),
        "weaknesses": _as_list(raw.get("weaknesses")),
        "suggestions": _as_list(raw.get("suggestions")),
        "rewrite_suggestion": str(raw.get("rewriteSuggestion") or raw.get("rewrite_suggestion") or ""),
        "word_count": word_count,
        "over_limit": MAX_WORDS[writing_type] is not None and word_count > MAX_WORDS[writing_type],
        **word_limits(writing_type),
    }
