# replicator/sync/models.py
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .status import ReplicationStatus, Status


@dataclass(frozen=True)
class SyncContext:
    """Identity of the caller a run is executed on behalf of"""
    subject: str
    roles: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReplicationConfig:
    id: str
    name: str
    source: str
    destination: str
    filter: str = ""
    failure_retry_count: int = 5
    metadata_only: bool = False
    suspended: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReplicationConfig':
        """Build a configuration from its YAML mapping"""
        missing = [key for key in ('id', 'name', 'source', 'destination') if not data.get(key)]
        if missing:
            raise ValueError(f"Replication config is missing: {', '.join(missing)}")

        retry_count = int(data.get('failure_retry_count', 5))
        if retry_count < 1:
            raise ValueError(f"failure_retry_count must be at least 1 for {data['name']}")

        return cls(
            id=str(data['id']),
            name=data['name'],
            source=data['source'],
            destination=data['destination'],
            filter=data.get('filter') or "",
            failure_retry_count=retry_count,
            metadata_only=bool(data.get('metadata_only', False)),
            suspended=bool(data.get('suspended', False))
        )


@dataclass
class ReplicationItem:
    """Last known replication outcome for one metadata record.

    `updated_at` is left unset by `succeeded` and `failed` so that the store
    stamps the time of the latest attempt.
    """
    config_id: str
    metadata_id: str
    source: str
    destination: str
    metadata_modified: Optional[datetime] = None
    resource_modified: Optional[datetime] = None
    failure_count: int = 0
    updated_at: Optional[datetime] = None

    def succeeded(self, metadata_modified: datetime,
                  resource_modified: Optional[datetime]) -> 'ReplicationItem':
        return replace(
            self,
            metadata_modified=metadata_modified,
            resource_modified=resource_modified,
            failure_count=0,
            updated_at=None
        )

    def failed(self, restart_count: bool = False) -> 'ReplicationItem':
        count = 1 if restart_count else self.failure_count + 1
        return replace(self, failure_count=count, updated_at=None)


@dataclass(frozen=True)
class RunOutcome:
    """Immutable record of one finished replication run"""
    config_id: str
    config_name: str
    start_time: datetime
    end_time: datetime
    status: Status
    push_count: int = 0
    push_fail_count: int = 0
    push_bytes: int = 0

    @classmethod
    def from_status(cls, config: ReplicationConfig, status: ReplicationStatus) -> 'RunOutcome':
        if not status.status.is_terminal or status.status is Status.ERROR:
            raise ValueError(f"Run for {config.name} has not completed")
        return cls(
            config_id=config.id,
            config_name=config.name,
            start_time=status.start_time,
            end_time=status.end_time,
            status=status.status,
            push_count=status.push_count,
            push_fail_count=status.push_fail_count,
            push_bytes=status.push_bytes
        )

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()
