"""In-memory background job store for task generation.

Generating a listening task takes one LLM call and one TTS call, which can
run for tens of seconds. Jobs let a client poll the current stage instead
of holding a request open.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger("toefl.jobs")

StageReporter = Callable[[str], None]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class GenerationJobStore:
    def __init__(self, max_jobs: int = 200, ttl_seconds: int = 3600):
        self._jobs: dict[str, dict] = {}
        self._lock = threading.Lock()
        self._max_jobs = max_jobs
        self._ttl_seconds = ttl_seconds

    def submit(
        self,
        *,
        user_id: int,
        task_type: str,
        request_id: str,
        worker: Callable[[StageReporter], dict],
    ) -> dict:
        """Register a job and run `worker` in a daemon thread.

        The worker receives a callback it uses to publish stage messages
        and returns the JSON-able result stored on success.
        """
        self._cleanup()
        job_id = uuid.uuid4().hex
        job = {
            "job_id": job_id,
            "user_id": user_id,
            "task_type": task_type,
            "status": "queued",
            "stage": "queued",
            "created_at": _now(),
            "started_at": None,
            "finished_at": None,
            "request_id": request_id,
            "result": None,
            "error": None,
        }
        with self._lock:
            self._jobs[job_id] = job
            self._evict_overflow()

        thread = threading.Thread(target=self._run_job, args=(job_id, worker), daemon=True)
        thread.start()
        return {"job_id": job_id, "status": "queued"}

    def get(self, job_id: str, user_id: Optional[int] = None) -> Optional[dict]:
        """Return a copy of the job, or None if unknown or owned by someone else."""
        self._cleanup()
        with self._lock:
            job = self._jobs.get(job_id)
            if not job:
                return None
            if user_id is not None and job["user_id"] != user_id:
                return None
            return dict(job)

    def _set(self, job_id: str, **fields) -> None:
        with self._lock:
            if job_id in self._jobs:
                self._jobs[job_id].update(fields)

    def _run_job(self, job_id: str, worker: Callable[[StageReporter], dict]) -> None:
        self._set(job_id, status="running", started_at=_now())
        try:
            result = worker(lambda stage: self._set(job_id, stage=stage))
        except Exception as exc:
            logger.warning("generation job %s failed: %s", job_id, exc)
            self._set(job_id, status="failed", stage="failed", error=str(exc), finished_at=_now())
            return
        self._set(job_id, status="succeeded", stage="done", result=result, finished_at=_now())

    def _evict_overflow(self) -> None:
        # caller holds the lock; oldest finished jobs go first
        overflow = len(self._jobs) - self._max_jobs
        if overflow <= 0:
            return
        finished = sorted(
            (j for j in self._jobs.values() if j.get("finished_at")),
            key=lambda j: j["finished_at"],
        )
        for old in finished[:overflow]:
            self._jobs.pop(old["job_id"], None)

    def _cleanup(self) -> None:
        cutoff = time.time() - self._ttl_seconds
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.get("finished_at") and datetime.fromisoformat(job["finished_at"]).timestamp() < cutoff
            ]
            for job_id in expired:
                self._jobs.pop(job_id, None)
