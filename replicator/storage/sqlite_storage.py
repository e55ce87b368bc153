# replicator/storage/sqlite_storage.py
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
import logging
from typing import List, Optional

from .base import ItemStore, RunHistory
from ..sync.models import ReplicationItem, RunOutcome
from ..sync.status import Status

logger = logging.getLogger(__name__)


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class _SQLiteBase(ABC):
    """Shared connection handling for the SQLite backed stores"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        logger.info(f"Initializing {type(self).__name__} at {db_path}")
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    @abstractmethod
    def _initialize_db(self) -> None:
        """Create the tables of the store if they do not exist yet"""
        pass

    def cleanup(self) -> None:
        try:
            if Path(self.db_path).exists():
                Path(self.db_path).unlink()
                logger.info(f"Removed database file: {self.db_path}")
        except OSError as e:
            logger.error(f"Failed to cleanup database: {str(e)}")
            raise


class SQLiteItemStore(_SQLiteBase, ItemStore):
    def _initialize_db(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS replication_items (
                        config_id TEXT NOT NULL,
                        metadata_id TEXT NOT NULL,
                        source TEXT NOT NULL,
                        destination TEXT NOT NULL,
                        metadata_modified TEXT,
                        resource_modified TEXT,
                        failure_count INTEGER NOT NULL DEFAULT 0,
                        updated_at TEXT NOT NULL,
                        PRIMARY KEY (config_id, metadata_id, source, destination)
                    )
                ''')
                conn.commit()
                logger.debug("Item store initialized successfully")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize item store: {str(e)}")
            raise

    def get_item(self, config_id: str, metadata_id: str,
                 source: str, destination: str) -> Optional[ReplicationItem]:
        try:
            with self._connect() as conn:
                cursor = conn.execute('''
                    SELECT config_id, metadata_id, source, destination,
                           metadata_modified, resource_modified, failure_count, updated_at
                    FROM replication_items
                    WHERE config_id = ? AND metadata_id = ? AND source = ? AND destination = ?
                ''', (config_id, metadata_id, source, destination))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to get item {metadata_id}: {str(e)}")
            raise

        if row is None:
            return None
        return ReplicationItem(
            config_id=row[0],
            metadata_id=row[1],
            source=row[2],
            destination=row[3],
            metadata_modified=_from_text(row[4]),
            resource_modified=_from_text(row[5]),
            failure_count=row[6],
            updated_at=_from_text(row[7])
        )

    def get_failure_list(self, config_id: str, max_failures: int,
                         source: str, destination: str) -> List[str]:
        try:
            with self._connect() as conn:
                cursor = conn.execute('''
                    SELECT metadata_id FROM replication_items
                    WHERE config_id = ? AND source = ? AND destination = ?
                      AND failure_count > 0 AND failure_count < ?
                    ORDER BY updated_at ASC, metadata_id ASC
                ''', (config_id, source, destination, max_failures))
                return [row[0] for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to get failure list for {config_id}: {str(e)}")
            raise

    def save_item(self, item: ReplicationItem) -> None:
        updated_at = item.updated_at or datetime.now(timezone.utc)
        try:
            with self._connect() as conn:
                conn.execute('''
                    INSERT INTO replication_items
                    (config_id, metadata_id, source, destination,
                     metadata_modified, resource_modified, failure_count, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(config_id, metadata_id, source, destination) DO UPDATE SET
                        metadata_modified = excluded.metadata_modified,
                        resource_modified = excluded.resource_modified,
                        failure_count = excluded.failure_count,
                        updated_at = excluded.updated_at
                ''', (
                    item.config_id,
                    item.metadata_id,
                    item.source,
                    item.destination,
                    _to_text(item.metadata_modified),
                    _to_text(item.resource_modified),
                    item.failure_count,
                    updated_at.isoformat()
                ))
                conn.commit()
                logger.debug(f"Saved item {item.metadata_id} (failures={item.failure_count})")
        except sqlite3.Error as e:
            logger.error(f"Failed to save item {item.metadata_id}: {str(e)}")
            raise


class SQLiteRunHistory(_SQLiteBase, RunHistory):
    def _initialize_db(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS run_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        config_id TEXT NOT NULL,
                        config_name TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        status TEXT NOT NULL,
                        push_count INTEGER NOT NULL,
                        push_fail_count INTEGER NOT NULL,
                        push_bytes INTEGER NOT NULL
                    )
                ''')
                conn.commit()
                logger.debug("Run history initialized successfully")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize run history: {str(e)}")
            raise

    def get_run_outcomes(self, config_name: str) -> List[RunOutcome]:
        try:
            with self._connect() as conn:
                cursor = conn.execute('''
                    SELECT config_id, config_name, start_time, end_time, status,
                           push_count, push_fail_count, push_bytes
                    FROM run_history
                    WHERE config_name = ?
                    ORDER BY id ASC
                ''', (config_name,))
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to get run history for {config_name}: {str(e)}")
            raise

        return [
            RunOutcome(
                config_id=row[0],
                config_name=row[1],
                start_time=_from_text(row[2]),
                end_time=_from_text(row[3]),
                status=Status(row[4]),
                push_count=row[5],
                push_fail_count=row[6],
                push_bytes=row[7]
            )
            for row in rows
        ]

    def add_run_outcome(self, outcome: RunOutcome) -> None:
        try:
            with self._connect() as conn:
                conn.execute('''
                    INSERT INTO run_history
                    (config_id, config_name, start_time, end_time, status,
                     push_count, push_fail_count, push_bytes)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    outcome.config_id,
                    outcome.config_name,
                    outcome.start_time.isoformat(),
                    outcome.end_time.isoformat(),
                    outcome.status.value,
                    outcome.push_count,
                    outcome.push_fail_count,
                    outcome.push_bytes
                ))
                conn.commit()
                logger.debug(f"Recorded {outcome.status.value} run for {outcome.config_name}")
        except sqlite3.Error as e:
            logger.error(f"Failed to record run for {outcome.config_name}: {str(e)}")
            raise
