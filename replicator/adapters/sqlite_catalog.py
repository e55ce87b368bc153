# replicator/adapters/sqlite_catalog.py
import io
import json
import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple

from .exceptions import AdapterConnectionError, AdapterError, wrap_exception
from .interfaces import (
    CreateRequest,
    CreateStorageRequest,
    DeleteRequest,
    MetadataRecord,
    NodeAdapter,
    QueryRequest,
    QueryResponse,
    Resource,
    ResourceRequest,
    ResourceResponse,
    UpdateRequest,
    UpdateStorageRequest,
)
from ..sync.filters import AllOf, AnyOf, Filter, IdIn, ModifiedAfter, NativeFilter
from ..sync.models import SyncContext

logger = logging.getLogger(__name__)

RECORD_COLUMNS = '''id, modified, deleted, attributes, resource_uri,
                    resource_size, resource_modified'''


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    """UTC ISO text so that string comparison follows time order"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def to_sql(predicate: Optional[Filter]) -> Tuple[str, List[Any]]:
    """Translate a predicate into a WHERE clause over the records table.

    Native expressions are SQL boolean expressions over the catalog columns.
    """
    if predicate is None:
        return "1 = 1", []
    if isinstance(predicate, NativeFilter):
        return f"({predicate.expression})", []
    if isinstance(predicate, ModifiedAfter):
        return "modified > ?", [_timestamp(predicate.timestamp)]
    if isinstance(predicate, IdIn):
        placeholders = ",".join("?" * len(predicate.ids))
        return f"id IN ({placeholders})", list(predicate.ids)
    if isinstance(predicate, (AllOf, AnyOf)):
        joiner = " AND " if isinstance(predicate, AllOf) else " OR "
        clauses, params = [], []
        for sub in predicate.filters:
            clause, sub_params = to_sql(sub)
            clauses.append(clause)
            params.extend(sub_params)
        return "(" + joiner.join(clauses) + ")", params
    raise ValueError(f"Unsupported predicate: {type(predicate).__name__}")


class SQLiteCatalogAdapter(NodeAdapter):
    """Catalog node kept in a SQLite file, holding metadata records and their resources"""

    def __init__(self, db_path: str, name: str = "sqlite-catalog"):
        self.db_path = db_path
        self.name = name
        logger.info(f"Initializing catalog node {name} at {db_path}")
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _initialize_db(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS records (
                        id TEXT PRIMARY KEY,
                        modified TEXT NOT NULL,
                        deleted INTEGER NOT NULL DEFAULT 0,
                        title TEXT,
                        attributes TEXT NOT NULL,
                        resource_uri TEXT,
                        resource_size INTEGER,
                        resource_modified TEXT,
                        resource BLOB,
                        mime_type TEXT,
                        replicated_by TEXT
                    )
                ''')
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize catalog {self.db_path}: {str(e)}")
            raise

    def is_available(self) -> bool:
        if not Path(self.db_path).exists():
            logger.debug(f"Catalog {self.db_path} is not available")
            return False
        try:
            with sqlite3.connect(f"file:{self.db_path}?mode=rw", uri=True) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.debug(f"Catalog {self.db_path} is not available: {str(e)}")
            return False

    def get_system_name(self) -> str:
        return self.name

    def query(self, request: QueryRequest) -> QueryResponse:
        where, params = to_sql(request.filter)
        return QueryResponse(
            self._iter_records(where, params),
            lambda e: wrap_exception(f"Failed to query catalog {self.name}", e)
        )

    def _iter_records(self, where: str, params: List[Any]) -> Iterator[MetadataRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {RECORD_COLUMNS} FROM records WHERE {where} ORDER BY modified ASC, id ASC",
                params
            ).fetchall()
        logger.debug(f"Catalog {self.name} matched {len(rows)} records")
        for row in rows:
            yield self._to_record(row)

    @staticmethod
    def _to_record(row) -> MetadataRecord:
        return MetadataRecord(
            id=row[0],
            modified=_parse(row[1]),
            deleted=bool(row[2]),
            attributes=json.loads(row[3]),
            resource_uri=row[4],
            resource_size=row[5],
            resource_modified=_parse(row[6])
        )

    def get_record(self, record_id: str) -> Optional[MetadataRecord]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        return self._to_record(row) if row else None

    def exists(self, record: MetadataRecord) -> bool:
        with self._guard("check existence of", record.id):
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT 1 FROM records WHERE id = ? AND deleted = 0", (record.id,)
                ).fetchone()
        return row is not None

    def add_record(self, record: MetadataRecord, content: Optional[bytes] = None,
                   mime_type: Optional[str] = None,
                   context: Optional[SyncContext] = None) -> None:
        """Insert or replace a record, with its resource content if given"""
        if content is not None and record.resource_size is None:
            record.resource_size = len(content)
        with self._connect() as conn:
            conn.execute('''
                INSERT OR REPLACE INTO records
                (id, modified, deleted, title, attributes, resource_uri, resource_size,
                 resource_modified, resource, mime_type, replicated_by)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                record.id,
                _timestamp(record.modified),
                int(record.deleted),
                record.attributes.get('title'),
                json.dumps(record.attributes, default=str),
                record.resource_uri,
                record.resource_size,
                _timestamp(record.resource_modified),
                content,
                mime_type,
                context.subject if context else None
            ))
            conn.commit()

    def mark_deleted(self, record_id: str, modified: Optional[datetime] = None) -> None:
        """Turn a record into a tombstone so replication propagates the delete"""
        modified = modified or datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                "UPDATE records SET deleted = 1, modified = ? WHERE id = ?",
                (_timestamp(modified), record_id)
            )
            conn.commit()

    def create_metadata(self, request: CreateRequest) -> bool:
        return self._write(request.records, request.context, replace=False)

    def update_metadata(self, request: UpdateRequest) -> bool:
        return self._write(request.records, request.context, replace=True)

    def delete_metadata(self, request: DeleteRequest) -> bool:
        with self._guard("delete", ",".join(r.id for r in request.records)):
            with self._connect() as conn:
                conn.executemany(
                    "DELETE FROM records WHERE id = ?",
                    [(record.id,) for record in request.records]
                )
                conn.commit()
        return True

    def create_resource(self, request: CreateStorageRequest) -> bool:
        return self._write_resources(request.resources, request.context, replace=False)

    def update_resource(self, request: UpdateStorageRequest) -> bool:
        return self._write_resources(request.resources, request.context, replace=True)

    def read_resource(self, request: ResourceRequest) -> ResourceResponse:
        record = request.record
        with self._guard("read resource of", record.id):
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT resource, mime_type FROM records WHERE id = ?", (record.id,)
                ).fetchone()
        if row is None or row[0] is None:
            raise AdapterError(f"No resource stored for {record.id} in {self.name}")
        content = bytes(row[0])
        return ResourceResponse(Resource(
            record=record,
            stream=io.BytesIO(content),
            size=len(content),
            name=record.attributes.get('title'),
            mime_type=row[1] or "application/octet-stream"
        ))

    def _write(self, records: List[MetadataRecord], context: Optional[SyncContext],
               replace: bool) -> bool:
        try:
            for record in records:
                if not replace and self.exists(record):
                    logger.warning(f"Record {record.id} already exists in {self.name}")
                    return False
                if replace:
                    self._update_row(record, context)
                else:
                    self.add_record(record, context=context)
            return True
        except sqlite3.IntegrityError as e:
            logger.warning(f"Catalog {self.name} rejected records: {str(e)}")
            return False
        except sqlite3.OperationalError as e:
            raise AdapterConnectionError(f"Catalog {self.name} is unreachable", e)
        except sqlite3.Error as e:
            raise AdapterError(f"Failed to write to catalog {self.name}", e)

    def _update_row(self, record: MetadataRecord, context: Optional[SyncContext]) -> None:
        """Replace metadata columns while keeping any stored resource"""
        with self._connect() as conn:
            conn.execute('''
                UPDATE records SET modified = ?, deleted = ?, title = ?, attributes = ?,
                    resource_uri = ?, resource_size = ?, resource_modified = ?, replicated_by = ?
                WHERE id = ?
            ''', (
                _timestamp(record.modified),
                int(record.deleted),
                record.attributes.get('title'),
                json.dumps(record.attributes, default=str),
                record.resource_uri,
                record.resource_size,
                _timestamp(record.resource_modified),
                context.subject if context else None,
                record.id
            ))
            conn.commit()

    def _write_resources(self, resources: List[Resource], context: Optional[SyncContext],
                         replace: bool) -> bool:
        try:
            for resource in resources:
                record = resource.record
                if not replace and self.exists(record):
                    logger.warning(f"Record {record.id} already exists in {self.name}")
                    return False
                self.add_record(record, content=resource.stream.read(),
                                mime_type=resource.mime_type, context=context)
            return True
        except sqlite3.IntegrityError as e:
            logger.warning(f"Catalog {self.name} rejected resources: {str(e)}")
            return False
        except sqlite3.OperationalError as e:
            raise AdapterConnectionError(f"Catalog {self.name} is unreachable", e)
        except sqlite3.Error as e:
            raise AdapterError(f"Failed to store resources in {self.name}", e)

    @contextmanager
    def _guard(self, action: str, record_id: str):
        """Map sqlite errors raised inside the block onto adapter errors"""
        try:
            yield
        except sqlite3.OperationalError as e:
            raise AdapterConnectionError(f"Failed to {action} {record_id} in {self.name}", e) from e
        except sqlite3.Error as e:
            raise AdapterError(f"Failed to {action} {record_id} in {self.name}", e) from e
