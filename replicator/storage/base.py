from abc import ABC, abstractmethod
from typing import List, Optional

from ..sync.models import ReplicationItem, RunOutcome


class ItemStore(ABC):
    """Abstract base class for per-record replication state"""

    @abstractmethod
    def get_item(self, config_id: str, metadata_id: str,
                 source: str, destination: str) -> Optional[ReplicationItem]:
        """Get the stored item for a record, if it was ever pushed"""
        pass

    @abstractmethod
    def get_failure_list(self, config_id: str, max_failures: int,
                         source: str, destination: str) -> List[str]:
        """Get ids of failed items still below the retry limit"""
        pass

    @abstractmethod
    def save_item(self, item: ReplicationItem) -> None:
        """Insert or update an item"""
        pass


class RunHistory(ABC):
    """Abstract base class for the outcomes of past runs"""

    @abstractmethod
    def get_run_outcomes(self, config_name: str) -> List[RunOutcome]:
        """Get all recorded outcomes of a replication, oldest first"""
        pass

    @abstractmethod
    def add_run_outcome(self, outcome: RunOutcome) -> None:
        pass
