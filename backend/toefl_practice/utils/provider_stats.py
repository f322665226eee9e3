"""Structured observability for outbound provider calls (LLM and TTS)."""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock


_WRITE_LOCK = Lock()
_LOGGER = logging.getLogger("toefl.providers")

_EMPTY_PROVIDER = {
    "total_calls": 0,
    "failed_calls": 0,
    "slow_calls": 0,
    "avg_duration_ms": 0.0,
    "max_duration_ms": 0.0,
    "last_error": "",
}


def _stats_root() -> Path:
    raw = os.getenv("PROVIDER_STATS_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "data" / "provider_stats"


def _events_path() -> Path:
    root = _stats_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "provider_events.jsonl"


def _stats_path() -> Path:
    root = _stats_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "provider_stats.json"


def _load_stats() -> dict:
    stats_file = _stats_path()
    if not stats_file.exists():
        return {}
    try:
        return json.loads(stats_file.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        _LOGGER.warning("provider stats file unreadable, starting over: %s", stats_file)
        return {}


def get_provider_stats() -> dict:
    """Return the aggregate snapshot keyed by provider name."""
    stats = _load_stats()
    providers = stats.get("providers", {})
    out = {}
    for name in sorted(set(providers) | {"llm", "tts"}):
        entry = dict(_EMPTY_PROVIDER)
        entry.update({k: v for k, v in providers.get(name, {}).items() if k != "total_duration_ms"})
        out[name] = entry
    return {"providers": out, "updated_at": stats.get("updated_at")}


def record_provider_event(event: dict) -> None:
    """Append `event` to the jsonl log and fold it into the aggregate file."""
    payload = dict(event)
    payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    with _WRITE_LOCK:
        with _events_path().open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(payload, ensure_ascii=True) + "\n")
        _update_stats(payload)
    level = logging.WARNING if payload.get("failed") else logging.INFO
    _LOGGER.log(level, "provider_call %s", json.dumps(payload, ensure_ascii=True))


@contextmanager
def track_call(provider: str, operation: str, **extra):
    """Time the wrapped provider call and record it, success or failure.

    Exceptions propagate unchanged after the event is written.
    """
    started = time.perf_counter()
    try:
        yield
    except Exception as exc:
        record_provider_event({
            "provider": provider,
            "operation": operation,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "failed": True,
            "error": str(exc),
            **extra,
        })
        raise
    record_provider_event({
        "provider": provider,
        "operation": operation,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "failed": False,
        **extra,
    })


def _update_stats(event: dict) -> None:
    stats = _load_stats()
    providers = stats.setdefault("providers", {})
    entry = providers.setdefault(str(event.get("provider", "unknown")), {})
    for key, value in _EMPTY_PROVIDER.items():
        entry.setdefault(key, value)
    entry.setdefault("total_duration_ms", 0.0)

    duration_ms = float(event.get("duration_ms", 0.0))
    slow_threshold = float(os.getenv("PROVIDER_SLOW_MS", "30000"))

    entry["total_calls"] += 1
    entry["total_duration_ms"] += duration_ms
    entry["max_duration_ms"] = max(float(entry["max_duration_ms"]), duration_ms)
    if event.get("failed"):
        entry["failed_calls"] += 1
        entry["last_error"] = str(event.get("error", ""))
    if duration_ms >= slow_threshold:
        entry["slow_calls"] += 1
    entry["avg_duration_ms"] = entry["total_duration_ms"] / entry["total_calls"]
    stats["updated_at"] = datetime.now(timezone.utc).isoformat()
    _stats_path().write_text(json.dumps(stats, ensure_ascii=True, indent=2), encoding="utf-8")
