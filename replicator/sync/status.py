# replicator/sync/status.py
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


class Status(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ITEM_FAILURES_PRESENT = "item_failures_present"
    CONNECTION_LOST = "connection_lost"
    CANCELED = "canceled"
    # run aborted by an unexpected error; kept in memory only, never recorded as an outcome
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self not in (Status.PENDING, Status.RUNNING)


# Runs whose end time may serve as the watermark for the next change query
WATERMARK_STATUSES = frozenset({Status.SUCCESS, Status.ITEM_FAILURES_PRESENT})


class ReplicationStatus:
    """Counters and terminal status of a single replication run.

    Only the thread executing the run mutates it. Other threads may read it
    for progress reporting and must tolerate counters that are mid-update.
    """

    def __init__(self, replication_name: str):
        self.replication_name = replication_name
        self.push_count = 0
        self.push_fail_count = 0
        self.push_bytes = 0
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self._status = Status.PENDING
        self.error: Optional[str] = None

    @property
    def status(self) -> Status:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is Status.RUNNING

    def start(self) -> None:
        """Move the run into the running state"""
        if self._status is not Status.PENDING:
            raise ValueError(f"Run for {self.replication_name} already started ({self._status.value})")
        self.start_time = datetime.now(timezone.utc)
        self._status = Status.RUNNING

    def finish(self, status: Status) -> None:
        """Record the single terminal status of the run"""
        if not status.is_terminal or status is Status.ERROR:
            raise ValueError(f"{status.value} is not a terminal status of a completed run")
        if self._status.is_terminal:
            raise ValueError(
                f"Run for {self.replication_name} already finished with {self._status.value}"
            )
        self.end_time = datetime.now(timezone.utc)
        if self.start_time is None:
            self.start_time = self.end_time
        self._status = status
        logger.debug(f"Run for {self.replication_name} finished with {status.value}")

    def fail(self, error: BaseException) -> None:
        """Mark a run that stopped on an unexpected error"""
        if self._status.is_terminal:
            raise ValueError(
                f"Run for {self.replication_name} already finished with {self._status.value}"
            )
        self.end_time = datetime.now(timezone.utc)
        if self.start_time is None:
            self.start_time = self.end_time
        self.error = str(error)
        self._status = Status.ERROR
        logger.debug(f"Run for {self.replication_name} failed: {self.error}")

    def record_push(self, num_bytes: int = 0) -> None:
        self.push_count += 1
        self.push_bytes += num_bytes

    def record_push_failure(self) -> None:
        self.push_fail_count += 1

    @property
    def duration(self) -> float:
        """Elapsed seconds, up to now while the run is still going"""
        if self.start_time is None:
            return 0.0
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'replication': self.replication_name,
            'status': self._status.value,
            'push_count': self.push_count,
            'push_fail_count': self.push_fail_count,
            'push_bytes': self.push_bytes,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration': self.duration,
            'error': self.error
        }
