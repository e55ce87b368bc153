# replicator/sync/runner.py
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from .engine import SyncEngine, get_watermark
from .filters import FilterBuilder, compose_change_filter, render
from .models import ReplicationConfig, SyncContext
from .status import ReplicationStatus
from ..adapters.factory import create_adapter
from ..adapters.interfaces import NodeAdapter
from ..storage.base import ItemStore, RunHistory

logger = logging.getLogger(__name__)


class ReplicationRunner:
    """Runs the replications of a loaded configuration, one engine per run"""

    def __init__(self,
                 config: Dict[str, Any],
                 item_store: ItemStore,
                 history: RunHistory,
                 adapter_factory: Callable[[Dict[str, Any]], NodeAdapter] = create_adapter):
        self.sites = {site['name']: site for site in config.get('sites') or []}
        self.replications = [
            ReplicationConfig.from_dict(data) for data in config.get('replications') or []
        ]
        self.item_store = item_store
        self.history = history
        self.adapter_factory = adapter_factory
        self.last_status: Dict[str, ReplicationStatus] = {}
        self._active: Dict[str, SyncEngine] = {}
        self._lock = threading.Lock()
        logger.info(f"Initialized ReplicationRunner with {len(self.replications)} replications")

    def get_replication(self, name: str) -> ReplicationConfig:
        for replication in self.replications:
            if replication.name == name:
                return replication
        raise KeyError(f"Unknown replication: {name}")

    def run(self, replication: ReplicationConfig,
            context: Optional[SyncContext] = None) -> ReplicationStatus:
        """Run one replication and close its adapters afterwards"""
        with self.adapter_factory(self.sites[replication.source]) as source, \
                self.adapter_factory(self.sites[replication.destination]) as destination:
            engine = SyncEngine(replication, source, destination, self.item_store, self.history)
            with self._lock:
                if replication.name in self._active:
                    raise RuntimeError(f"Replication {replication.name} is already running")
                self._active[replication.name] = engine
                self.last_status[replication.name] = engine.status

            try:
                return engine.sync(context)
            finally:
                with self._lock:
                    self._active.pop(replication.name, None)
                    self.last_status[replication.name] = engine.status

    def run_all(self, names: Optional[List[str]] = None,
                context: Optional[SyncContext] = None,
                show_progress: bool = False) -> Dict[str, ReplicationStatus]:
        """Run every active replication, or only the named ones, in order"""
        if names:
            selected = [self.get_replication(name) for name in names]
        else:
            selected = [r for r in self.replications if not r.suspended]

        results = {}
        for replication in tqdm(selected, desc="Replicating", disable=not show_progress):
            results[replication.name] = self.run(replication, context)
        return results

    def status(self, name: str) -> Optional[ReplicationStatus]:
        """Live status of a running replication, otherwise of its last run"""
        with self._lock:
            engine = self._active.get(name)
            if engine is not None:
                return engine.status
            return self.last_status.get(name)

    def is_running(self, name: str) -> bool:
        with self._lock:
            return name in self._active

    def cancel(self, name: str) -> bool:
        """Request cancellation of a running replication"""
        with self._lock:
            engine = self._active.get(name)
        if engine is None:
            return False
        engine.cancel()
        return True

    def plan(self, name: str) -> Dict[str, Any]:
        """Describe what the next run of a replication would request from its source"""
        replication = self.get_replication(name)
        failed_ids = self.item_store.get_failure_list(
            replication.id, replication.failure_retry_count,
            replication.source, replication.destination
        )
        watermark = get_watermark(self.history, replication.name)
        predicate = compose_change_filter(FilterBuilder(), replication.filter, watermark, failed_ids)
        return {
            'replication': replication.name,
            'watermark': watermark.isoformat() if watermark else None,
            'failed_ids': failed_ids,
            'filter': render(predicate)
        }
