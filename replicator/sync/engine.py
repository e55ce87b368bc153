# replicator/sync/engine.py
import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence, Set, Tuple

from .filters import FilterBuilder, change_set_filter, failed_items_filter, render
from .models import ReplicationConfig, ReplicationItem, RunOutcome, SyncContext
from .status import ReplicationStatus, Status, WATERMARK_STATUSES
from ..adapters.exceptions import AdapterConnectionError, AdapterError
from ..adapters.interfaces import (
    CreateRequest,
    CreateStorageRequest,
    DeleteRequest,
    MetadataRecord,
    NodeAdapter,
    QueryRequest,
    ResourceRequest,
    UpdateRequest,
    UpdateStorageRequest,
)
from ..storage.base import ItemStore, RunHistory

logger = logging.getLogger(__name__)


class Operation(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def classify_operation(item_exists: bool, deleted: bool) -> Operation:
    """Decide what to push for a record given whether it was replicated before"""
    if not item_exists:
        return Operation.CREATE
    if deleted:
        return Operation.DELETE
    return Operation.UPDATE


def get_watermark(history: RunHistory, config_name: str) -> Optional[datetime]:
    """End time of the last run that completed its pass, if any"""
    ends = [
        outcome.end_time
        for outcome in history.get_run_outcomes(config_name)
        if outcome.status in WATERMARK_STATUSES
    ]
    return max(ends) if ends else None


class SyncEngine:
    """Replicates the records selected by one configuration from a source node to a destination node"""

    def __init__(self,
                 config: ReplicationConfig,
                 source: NodeAdapter,
                 destination: NodeAdapter,
                 item_store: ItemStore,
                 history: RunHistory,
                 filter_builder: Optional[FilterBuilder] = None):
        self.config = config
        self.source = source
        self.destination = destination
        self.item_store = item_store
        self.history = history
        self.filter_builder = filter_builder or FilterBuilder()
        self.status = ReplicationStatus(config.name)
        self._canceled = threading.Event()
        logger.info(
            f"Initialized sync engine for {config.name} ({config.source} -> {config.destination})"
        )

    def cancel(self) -> None:
        """Ask the run in progress, or the next one, to stop at its next checkpoint"""
        logger.info(f"Cancel requested for {self.config.name}")
        self._canceled.set()

    def is_canceled(self) -> bool:
        return self._canceled.is_set()

    def sync(self, context: Optional[SyncContext] = None) -> ReplicationStatus:
        """Run one replication pass and record its outcome"""
        status = ReplicationStatus(self.config.name)
        self.status = status
        status.start()
        logger.info(f"Starting replication run for {self.config.name}")

        try:
            aborted = self._run(context)
        except Exception as e:
            status.fail(e)
            raise
        finally:
            self._canceled.clear()

        if aborted is not None:
            final = aborted
        elif status.push_fail_count == 0:
            final = Status.SUCCESS
        else:
            final = Status.ITEM_FAILURES_PRESENT
        status.finish(final)

        self.history.add_run_outcome(RunOutcome.from_status(self.config, status))
        logger.info(
            f"Replication run for {self.config.name} finished with {final.value}: "
            f"{status.push_count} pushed, {status.push_fail_count} failed"
        )
        return status

    def _run(self, context: Optional[SyncContext]) -> Optional[Status]:
        """Returns the aborting status, or None when every record was processed"""
        if self.is_canceled():
            return Status.CANCELED

        failed_ids = self.item_store.get_failure_list(
            self.config.id, self.config.failure_retry_count,
            self.config.source, self.config.destination
        )
        if self.is_canceled():
            return Status.CANCELED

        processed: Set[str] = set()
        if failed_ids:
            logger.info(f"Retrying {len(failed_ids)} failed items for {self.config.name}")
            aborted = self._replicate(self._failed_items_query(failed_ids, context),
                                      context, processed, retry=True)
            if aborted is not None:
                return aborted
            if self.is_canceled():
                return Status.CANCELED

        watermark = get_watermark(self.history, self.config.name)
        predicate = change_set_filter(self.filter_builder, self.config.filter, watermark)
        logger.debug(f"Change set query for {self.config.name}: {render(predicate)}")
        request = QueryRequest(predicate, modified_after=watermark, context=context)
        return self._replicate(request, context, processed, retry=False)

    def _failed_items_query(self, failed_ids: Sequence[str],
                            context: Optional[SyncContext]) -> QueryRequest:
        predicate = failed_items_filter(self.filter_builder, self.config.filter, failed_ids)
        return QueryRequest(predicate, context=context)

    def _replicate(self, request: QueryRequest, context: Optional[SyncContext],
                   processed: Set[str], retry: bool) -> Optional[Status]:
        try:
            response = self.source.query(request)
        except AdapterConnectionError as e:
            logger.error(f"Lost connection to {self.config.source} while querying: {str(e)}")
            return Status.CONNECTION_LOST
        except AdapterError as e:
            return self._source_failure(e)

        records = iter(response.records)
        while True:
            try:
                record = next(records)
            except StopIteration:
                return None
            except Exception as e:
                return self._source_failure(response.error_handler(e))

            if self.is_canceled():
                logger.info(f"Replication run for {self.config.name} canceled")
                return Status.CANCELED
            if record.id in processed:
                continue
            processed.add(record.id)

            aborted = self._push(record, context, retry)
            if aborted is not None:
                return aborted

    def _source_failure(self, error: AdapterError) -> Status:
        """Classify a failed source query; anything but lost connectivity is fatal"""
        if isinstance(error, AdapterConnectionError) or not self.source.is_available():
            logger.error(f"Lost connection to {self.config.source} while querying: {str(error)}")
            return Status.CONNECTION_LOST
        logger.error(f"Query against {self.config.source} failed: {str(error)}")
        raise error

    def _push(self, record: MetadataRecord, context: Optional[SyncContext],
              retry: bool) -> Optional[Status]:
        """Push one record; returns CONNECTION_LOST when the run has to stop"""
        item = self.item_store.get_item(
            self.config.id, record.id, self.config.source, self.config.destination
        )
        if item is None and record.deleted:
            logger.debug(f"Skipping deleted record {record.id}, it was never replicated")
            return None

        operation = classify_operation(item is not None, record.deleted)
        logger.debug(f"{operation.value} {record.id} on {self.config.destination}")

        try:
            if operation is Operation.CREATE:
                pushed, num_bytes = self._create(record, context)
            elif operation is Operation.UPDATE:
                pushed, num_bytes = self._update(record, item, context)
            else:
                pushed = self.destination.delete_metadata(DeleteRequest([record], context))
                num_bytes = 0
        except AdapterConnectionError as e:
            logger.error(f"Lost connection while pushing {record.id}: {str(e)}")
            return Status.CONNECTION_LOST
        except AdapterError as e:
            logger.warning(f"Failed to {operation.value} {record.id}: {str(e)}")
            pushed, num_bytes = False, 0

        if item is None:
            item = ReplicationItem(
                config_id=self.config.id,
                metadata_id=record.id,
                source=self.config.source,
                destination=self.config.destination
            )

        if pushed:
            self.status.record_push(num_bytes)
            self.item_store.save_item(item.succeeded(record.modified, record.resource_modified))
            return None

        logger.warning(f"Destination {self.config.destination} rejected {operation.value} of {record.id}")
        self.status.record_push_failure()
        # a record matched by the change window after exhausting its retries starts a fresh count
        exhausted = item.failure_count >= self.config.failure_retry_count
        self.item_store.save_item(item.failed(restart_count=exhausted and not retry))

        if not (self.source.is_available() and self.destination.is_available()):
            logger.error(f"Lost connection after failing to push {record.id}")
            return Status.CONNECTION_LOST
        return None

    def _create(self, record: MetadataRecord,
                context: Optional[SyncContext]) -> Tuple[bool, int]:
        if self.config.metadata_only or not record.has_resource:
            return self.destination.create_metadata(CreateRequest([record], context)), 0

        resource = self.source.read_resource(ResourceRequest(record, context)).resource
        try:
            pushed = self.destination.create_resource(CreateStorageRequest([resource], context))
        finally:
            resource.stream.close()
        return pushed, resource.size

    def _update(self, record: MetadataRecord, item: ReplicationItem,
                context: Optional[SyncContext]) -> Tuple[bool, int]:
        if not self.destination.exists(record):
            logger.debug(f"{record.id} is missing on {self.config.destination}, creating it")
            return self._create(record, context)

        if self.config.metadata_only or not self._resource_changed(record, item):
            return self.destination.update_metadata(UpdateRequest([record], context)), 0

        resource = self.source.read_resource(ResourceRequest(record, context)).resource
        try:
            pushed = self.destination.update_resource(UpdateStorageRequest([resource], context))
        finally:
            resource.stream.close()
        return pushed, resource.size

    @staticmethod
    def _resource_changed(record: MetadataRecord, item: ReplicationItem) -> bool:
        if not record.has_resource:
            return False
        if item.resource_modified is None or record.resource_modified is None:
            return True
        return record.resource_modified > item.resource_modified
