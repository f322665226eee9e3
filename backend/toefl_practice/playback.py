"""Browser speech fallback: duration estimate, playback clock and plans.

When a task has no stored audio the client reads the transcript with the
browser's speech engine, which reports neither duration nor position. The
numbers here are estimates from word count; they only need to track
elapsed time roughly for the progress bar and scrubbing.
"""

import math
import re
import time
from typing import Callable, List, Optional

WORDS_PER_MINUTE = 150
NARRATOR = "Narrator"

_SPEAKER_LINE = re.compile(r"^\s*([A-Z][\w .'()-]{0,40}?)\s*:\s*(.+)$")


def split_words(text: str) -> List[str]:
    return text.split()


def estimate_duration(text: str, rate: float = 1.0) -> float:
    """Seconds needed to speak `text` at `rate` (1.0 is normal speed)."""
    if rate <= 0:
        raise ValueError("rate must be positive")
    words = len(split_words(text or ""))
    return words / WORDS_PER_MINUTE * 60.0 / rate


class SpeechPlayback:
    """Playback clock for one transcript.

    States: `idle`, `playing`, `paused`, `stopped`, `finished`.
    """

    def __init__(self, text: str, rate: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.text = text or ""
        self.words = split_words(self.text)
        self.rate = rate
        self.duration = estimate_duration(self.text, rate)
        self.state = "idle"
        self._clock = clock
        self._banked = 0.0
        self._resumed_at: Optional[float] = None

    def _running_for(self) -> float:
        if self.state != "playing" or self._resumed_at is None:
            return 0.0
        return self._clock() - self._resumed_at

    @property
    def elapsed(self) -> float:
        return min(self.duration, self._banked + self._running_for())

    @property
    def finished(self) -> bool:
        self._settle()
        return self.state == "finished"

    @property
    def progress(self) -> float:
        if self.duration <= 0:
            return 100.0 if self.state == "finished" else 0.0
        return max(0.0, min(100.0, self.elapsed / self.duration * 100.0))

    def _settle(self) -> None:
        if self.state == "playing" and self._banked + self._running_for() >= self.duration:
            self._banked = self.duration
            self._resumed_at = None
            self.state = "finished"

    def play(self) -> None:
        """Start from the beginning; a playing or paused transcript is restarted."""
        self._banked = 0.0
        self._resumed_at = self._clock()
        self.state = "playing"
        self._settle()

    def pause(self) -> None:
        self._settle()
        if self.state == "playing":
            self._banked += self._running_for()
            self._resumed_at = None
            self.state = "paused"

    def resume(self) -> None:
        if self.state == "paused":
            self._resumed_at = self._clock()
            self.state = "playing"
        elif self.state in ("idle", "stopped"):
            self.play()

    def stop(self) -> None:
        self._banked = 0.0
        self._resumed_at = None
        self.state = "stopped"

    def seek(self, fraction: float) -> None:
        """Jump to `fraction` (0-1) of the transcript.

        The speech engine cannot seek, so the client cancels and speaks
        `remaining_text()` again; the clock restarts from the new offset.
        Seeking keeps a paused transcript paused.
        """
        if not 0.0 <= fraction <= 1.0:
            raise ValueError("fraction must be between 0 and 1")
        self._settle()
        self._banked = fraction * self.duration
        if self.state in ("playing", "finished", "idle", "stopped"):
            self._resumed_at = self._clock()
            self.state = "playing"
        self._settle()

    def word_index(self) -> int:
        if not self.words or self.duration <= 0:
            return 0
        return min(len(self.words), int(math.floor(self.elapsed / self.duration * len(self.words))))

    def remaining_text(self) -> str:
        return " ".join(self.words[self.word_index():])

    def snapshot(self) -> dict:
        self._settle()
        return {
            "state": self.state,
            "elapsed_seconds": round(self.elapsed, 2),
            "duration_seconds": round(self.duration, 2),
            "progress": round(self.progress, 2),
            "word_index": self.word_index(),
            "remaining_text": self.remaining_text(),
        }


def split_speakers(transcript: str) -> List[dict]:
    """Split a dialogue into `{speaker, text}` turns.

    Lines without a `Speaker:` label continue the previous turn; leading
    unlabeled text is attributed to the narrator.
    """
    turns: List[dict] = []
    for line in transcript.splitlines():
        if not line.strip():
            continue
        match = _SPEAKER_LINE.match(line)
        if match:
            turns.append({"speaker": match.group(1).strip(), "text": match.group(2).strip()})
        elif turns:
            turns[-1]["text"] = f"{turns[-1]['text']} {line.strip()}"
        else:
            turns.append({"speaker": NARRATOR, "text": line.strip()})
    return turns


def speech_plan(task_type: str, transcript: str, rate: float = 1.0) -> dict:
    """Utterances the browser should speak for a task without audio.

    Conversations get one utterance per turn with each distinct speaker
    mapped to its own voice slot; other tasks are a single narration.
    """
    if not transcript or not transcript.strip():
        raise ValueError("task has no transcript to read")
    if task_type == "conversation":
        turns = split_speakers(transcript)
    else:
        turns = [{"speaker": NARRATOR, "text": " ".join(transcript.split())}]
    voices: dict = {}
    segments = []
    for turn in turns:
        voice = voices.setdefault(turn["speaker"], len(voices))
        segments.append({
            "speaker": turn["speaker"],
            "voice_slot": voice,
            "text": turn["text"],
            "estimated_seconds": round(estimate_duration(turn["text"], rate), 2),
        })
    return {
        "task_type": task_type,
        "rate": rate,
        "words": len(split_words(transcript)),
        "estimated_seconds": round(estimate_duration(transcript, rate), 2),
        "speakers": list(voices),
        "segments": segments,
    }
