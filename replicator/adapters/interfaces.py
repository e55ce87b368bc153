# replicator/adapters/interfaces.py
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional

from .exceptions import AdapterError, wrap_exception
from ..sync.filters import Filter
from ..sync.models import SyncContext


@dataclass
class MetadataRecord:
    """A metadata record as produced by a source node"""
    id: str
    modified: datetime
    attributes: Dict[str, Any] = field(default_factory=dict)
    resource_uri: Optional[str] = None
    resource_size: Optional[int] = None
    resource_modified: Optional[datetime] = None
    deleted: bool = False

    @property
    def has_resource(self) -> bool:
        return self.resource_uri is not None


@dataclass
class Resource:
    """Binary content attached to a metadata record"""
    record: MetadataRecord
    stream: BinaryIO
    size: int
    name: Optional[str] = None
    mime_type: str = "application/octet-stream"


@dataclass
class QueryRequest:
    filter: Optional[Filter]
    modified_after: Optional[datetime] = None
    context: Optional[SyncContext] = None


def _default_error_handler(error: Exception) -> AdapterError:
    return wrap_exception("Failed to query remote system", error)


@dataclass
class QueryResponse:
    """Records matching a query.

    Exceptions raised while iterating `records` are passed to
    `error_handler`, which maps them onto the adapter error hierarchy.
    """
    records: Iterable[MetadataRecord]
    error_handler: Callable[[Exception], AdapterError] = _default_error_handler


@dataclass
class CreateRequest:
    records: List[MetadataRecord]
    context: Optional[SyncContext] = None


@dataclass
class UpdateRequest:
    records: List[MetadataRecord]
    context: Optional[SyncContext] = None


@dataclass
class DeleteRequest:
    records: List[MetadataRecord]
    context: Optional[SyncContext] = None


@dataclass
class ResourceRequest:
    record: MetadataRecord
    context: Optional[SyncContext] = None


@dataclass
class ResourceResponse:
    resource: Resource


@dataclass
class CreateStorageRequest:
    resources: List[Resource]
    context: Optional[SyncContext] = None


@dataclass
class UpdateStorageRequest:
    resources: List[Resource]
    context: Optional[SyncContext] = None


class NodeAdapter(ABC):
    """Uniform view of a remote store taking part in replication.

    Write operations return True when the node accepted the change and False
    when it reported processing errors for it. Connectivity problems are
    raised as AdapterConnectionError.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the node can currently be reached"""
        pass

    @abstractmethod
    def get_system_name(self) -> str:
        pass

    @abstractmethod
    def query(self, request: QueryRequest) -> QueryResponse:
        pass

    @abstractmethod
    def exists(self, record: MetadataRecord) -> bool:
        pass

    @abstractmethod
    def create_metadata(self, request: CreateRequest) -> bool:
        pass

    @abstractmethod
    def update_metadata(self, request: UpdateRequest) -> bool:
        pass

    @abstractmethod
    def delete_metadata(self, request: DeleteRequest) -> bool:
        pass

    @abstractmethod
    def create_resource(self, request: CreateStorageRequest) -> bool:
        pass

    @abstractmethod
    def update_resource(self, request: UpdateStorageRequest) -> bool:
        pass

    @abstractmethod
    def read_resource(self, request: ResourceRequest) -> ResourceResponse:
        pass

    def close(self) -> None:
        """Release any resources held by the adapter"""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
