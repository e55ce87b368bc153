# replicator/adapters/webhdfs.py
"""Read-only source node backed by a Hadoop file system through the WebHDFS REST API"""

import hashlib
import io
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

import httpx

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
from ..sync.filters import AllOf, AnyOf, Filter, IdIn

logger = logging.getLogger(__name__)

UUID_VERSION_INDEX = 14


def requested_ids(predicate: Optional[Filter]) -> Optional[FrozenSet[str]]:
    """Ids a predicate restricts the result to, or None when it allows any id.

    Only the identity clauses are evaluated; every other predicate is
    treated as matching all ids.
    """
    if isinstance(predicate, IdIn):
        return frozenset(predicate.ids)
    if isinstance(predicate, AllOf):
        restricted = [ids for ids in map(requested_ids, predicate.filters) if ids is not None]
        return frozenset.intersection(*restricted) if restricted else None
    if isinstance(predicate, AnyOf):
        branches = [requested_ids(f) for f in predicate.filters]
        if any(ids is None for ids in branches):
            return None
        return frozenset.union(*branches)
    return None


def version4_id(file_url: str, modification_time: datetime) -> str:
    """Name based id for a file version.

    The URL alone is not unique once a file is replaced, so the modification
    time is part of the name. The MD5 name based UUID gets its version digit
    rewritten to 4.
    """
    millis = int(modification_time.timestamp() * 1000)
    digest = hashlib.md5(f"{file_url}_{millis}".encode()).digest()
    name_uuid = str(uuid.UUID(bytes=digest, version=3))
    return name_uuid[:UUID_VERSION_INDEX] + "4" + name_uuid[UUID_VERSION_INDEX + 1:]


class WebHdfsNodeAdapter(NodeAdapter):
    """Lists regular files of a WebHDFS directory as metadata records"""

    def __init__(self, webhdfs_url: str, client: httpx.Client):
        self.webhdfs_url = webhdfs_url if webhdfs_url.endswith('/') else webhdfs_url + '/'
        self.client = client

    def is_available(self) -> bool:
        logger.info(f"Checking access to: {self.webhdfs_url}")
        try:
            response = self.client.get(
                self.webhdfs_url, params={'op': 'CHECKACCESS', 'fsaction': 'rwx'}
            )
        except httpx.HTTPError as e:
            logger.debug(f"Access to {self.webhdfs_url} is not available: {str(e)}")
            return False

        if response.status_code != httpx.codes.OK:
            logger.debug(f"Access to {self.webhdfs_url} is not available.")
            return False
        return True

    def get_system_name(self) -> str:
        return "webHDFS"

    def query(self, request: QueryRequest) -> QueryResponse:
        files = self.get_files_to_replicate(request.modified_after)
        files.sort(key=lambda status: status['modificationTime'])
        records = [self.create_record(status) for status in files]

        ids = requested_ids(request.filter)
        if ids is not None:
            records = [record for record in records if record.id in ids]
            logger.debug(f"Kept {len(records)} files matching {len(ids)} requested ids")
        return QueryResponse(records, lambda e: wrap_exception("Failed to query remote system", e))

    def create_record(self, file_status: Dict[str, Any]) -> MetadataRecord:
        """Build the metadata record describing one file"""
        file_url = self.webhdfs_url + file_status['pathSuffix']
        logger.debug(f"Creating metadata record from file at: {file_url}")

        modified = _from_millis(file_status['modificationTime'])
        record_id = version4_id(file_url, modified)
        logger.debug(f"UUID for {file_url} is {record_id}")

        return MetadataRecord(
            id=record_id,
            modified=modified,
            attributes={
                'id': record_id,
                'title': file_status['pathSuffix'],
                'created': modified.isoformat(),
                'modified': modified.isoformat(),
                'resource-uri': file_url,
                'resource-size': str(file_status.get('length', 0)),
            },
            resource_uri=file_url,
            resource_size=file_status.get('length', 0),
            resource_modified=modified
        )

    def get_files_to_replicate(self, filter_date: Optional[datetime]) -> List[Dict[str, Any]]:
        """Page through LISTSTATUS_BATCH and keep the files worth replicating"""
        files_to_replicate: List[Dict[str, Any]] = []
        start_after: Optional[str] = None

        while True:
            params = {'op': 'LISTSTATUS_BATCH'}
            if start_after is not None:
                params['startAfter'] = start_after

            try:
                response = self.client.get(self.webhdfs_url, params=params)
            except httpx.TransportError as e:
                raise AdapterConnectionError(f"Could not list {self.webhdfs_url}", e) from e

            logger.debug(f"Response contains status code: {response.status_code}")
            if response.status_code != httpx.codes.OK:
                raise AdapterError(
                    f"List Status Batch request failed with status code: {response.status_code}"
                )

            try:
                listing = response.json()['DirectoryListing']
                results = listing['partialListing']['FileStatuses']['FileStatus']
                remaining = int(listing.get('remainingEntries', 0))
            except (json.JSONDecodeError, KeyError, TypeError) as e:
                logger.error(f"Error processing JSON: {str(e)}")
                return files_to_replicate

            files_to_replicate.extend(self.get_relevant_files(results, filter_date))
            if remaining <= 0 or not results:
                break
            start_after = results[-1]['pathSuffix']

        logger.info(f"Identified {len(files_to_replicate)} files to replicate.")
        return files_to_replicate

    @staticmethod
    def get_relevant_files(files: List[Dict[str, Any]],
                           filter_date: Optional[datetime]) -> List[Dict[str, Any]]:
        """Keep regular files modified strictly after the filter date, when there is one"""
        return [
            status for status in files
            if status.get('type') == 'FILE'
            and (filter_date is None or _from_millis(status['modificationTime']) > filter_date)
        ]

    def read_resource(self, request: ResourceRequest) -> ResourceResponse:
        record = request.record
        try:
            response = self.client.get(
                record.resource_uri, params={'op': 'OPEN'}, follow_redirects=True
            )
        except httpx.TransportError as e:
            raise AdapterConnectionError(f"Could not read {record.resource_uri}", e) from e
        if response.status_code != httpx.codes.OK:
            raise AdapterError(
                f"Reading {record.resource_uri} failed with status code: {response.status_code}"
            )
        return ResourceResponse(Resource(
            record=record,
            stream=io.BytesIO(response.content),
            size=len(response.content),
            name=record.attributes.get('title'),
            mime_type=response.headers.get('content-type', 'application/octet-stream')
        ))

    def exists(self, record: MetadataRecord) -> bool:
        return False

    def create_metadata(self, request: CreateRequest) -> bool:
        return False

    def update_metadata(self, request: UpdateRequest) -> bool:
        return False

    def delete_metadata(self, request: DeleteRequest) -> bool:
        return False

    def create_resource(self, request: CreateStorageRequest) -> bool:
        return False

    def update_resource(self, request: UpdateStorageRequest) -> bool:
        return False

    def close(self) -> None:
        self.client.close()


def _from_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
