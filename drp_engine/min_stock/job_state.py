"""
Batch job state machine.

    idle -> running -> completed | error
    completed | error -> running   (a new job)

`try_start()` is the only way into `running`, so at most one job runs at a time.
All transitions go through a single lock.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from drp_engine.errors import JobStateError

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class JobState:
    job_id: Optional[str] = None
    status: JobStatus = JobStatus.IDLE
    total_products: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_products: List[str] = field(default_factory=list)
    message: str = "No calculation in progress"
    eta: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def progress_pct(self) -> float:
        if self.total_products <= 0:
            return 0.0
        return round(self.processed / self.total_products * 100.0, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "total_products": self.total_products,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failed_products": list(self.failed_products),
            "progress_pct": self.progress_pct,
            "message": self.message,
            "eta": self.eta,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class JobStateStore:
    """Thread-safe holder of the current (or last) batch job state."""

    def __init__(self, max_error_ids: int = 50):
        self.max_error_ids = max_error_ids
        self._lock = threading.Lock()
        self._state = JobState()

    def status(self) -> JobState:
        """Snapshot; mutating it does not affect the store."""
        with self._lock:
            return copy.deepcopy(self._state)

    def try_start(self, message: str = "Starting calculation") -> Tuple[bool, JobState]:
        """Move to running. Returns (False, current state) if a job is already running."""
        with self._lock:
            if self._state.status == JobStatus.RUNNING:
                return False, copy.deepcopy(self._state)
            self._state = JobState(
                job_id=uuid.uuid4().hex[:12],
                status=JobStatus.RUNNING,
                message=message,
                started_at=datetime.now(),
            )
            return True, copy.deepcopy(self._state)

    def _require_running(self, action: str) -> None:
        if self._state.status != JobStatus.RUNNING:
            raise JobStateError(f"Cannot {action}: job is {self._state.status.value}", self._state.status.value)

    def set_total(self, total: int, message: Optional[str] = None) -> None:
        with self._lock:
            self._require_running("set total")
            self._state.total_products = total
            if message:
                self._state.message = message

    def set_message(self, message: str) -> None:
        with self._lock:
            self._require_running("update message")
            self._state.message = message

    def record_success(self, count: int = 1) -> None:
        with self._lock:
            self._require_running("record success")
            self._state.succeeded += count

    def record_failure(self, item_id: str) -> None:
        with self._lock:
            self._require_running("record failure")
            self._state.failed += 1
            if len(self._state.failed_products) < self.max_error_ids and item_id not in self._state.failed_products:
                self._state.failed_products.append(item_id)

    def record_progress(self, processed: int, eta: Optional[str] = None, message: Optional[str] = None) -> None:
        with self._lock:
            self._require_running("record progress")
            self._state.processed = processed
            self._state.eta = eta
            if message:
                self._state.message = message

    def complete(self, message: str = "Calculation completed") -> JobState:
        with self._lock:
            self._require_running("complete")
            self._state.status = JobStatus.COMPLETED
            self._state.message = message
            self._state.eta = None
            self._state.finished_at = datetime.now()
            return copy.deepcopy(self._state)

    def fail(self, message: str) -> JobState:
        with self._lock:
            self._require_running("fail")
            self._state.status = JobStatus.ERROR
            self._state.message = message
            self._state.eta = None
            self._state.finished_at = datetime.now()
            return copy.deepcopy(self._state)
