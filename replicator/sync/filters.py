# replicator/sync/filters.py
"""
Predicates sent to a source node's query.

The engine composes these objects but never evaluates them; each node
adapter translates them into its own query language. The base filter of a
replication config is carried verbatim as a NativeFilter.

For a run with failed ids F, watermark W and base filter B the records
requested from the source are

    B AND (id IN F  OR  modified > W)

issued as one query per branch so that retries go first: the identity
branch is only built when F is non-empty, and the temporal branch degrades
to B alone when there is no watermark yet (full sync).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple
import logging

logger = logging.getLogger(__name__)


class Filter:
    """Base class of every query predicate"""


@dataclass(frozen=True)
class NativeFilter(Filter):
    expression: str


@dataclass(frozen=True)
class ModifiedAfter(Filter):
    timestamp: datetime


@dataclass(frozen=True)
class IdIn(Filter):
    ids: Tuple[str, ...]

    def __post_init__(self):
        if not self.ids:
            raise ValueError("IdIn requires at least one id")


@dataclass(frozen=True)
class AllOf(Filter):
    filters: Tuple[Filter, ...]


@dataclass(frozen=True)
class AnyOf(Filter):
    filters: Tuple[Filter, ...]


class FilterBuilder:
    """Creates predicates; AllOf/AnyOf collapse when given a single operand"""

    def native(self, expression: Optional[str]) -> Optional[Filter]:
        if expression is None or not expression.strip():
            return None
        return NativeFilter(expression.strip())

    def modified_after(self, timestamp: datetime) -> Filter:
        return ModifiedAfter(timestamp)

    def id_in(self, ids: Iterable[str]) -> Filter:
        return IdIn(tuple(ids))

    def all_of(self, *filters: Optional[Filter]) -> Optional[Filter]:
        return self._combine(AllOf, filters)

    def any_of(self, *filters: Optional[Filter]) -> Optional[Filter]:
        return self._combine(AnyOf, filters)

    @staticmethod
    def _combine(kind, filters: Sequence[Optional[Filter]]) -> Optional[Filter]:
        present = tuple(f for f in filters if f is not None)
        if not present:
            return None
        if len(present) == 1:
            return present[0]
        return kind(present)


def failed_items_filter(builder: FilterBuilder, base_filter: str,
                        failed_ids: Sequence[str]) -> Optional[Filter]:
    """Base filter restricted to previously failed ids"""
    if not failed_ids:
        raise ValueError("Cannot build a failed-items filter without failed ids")
    return builder.all_of(builder.native(base_filter), builder.id_in(failed_ids))


def change_set_filter(builder: FilterBuilder, base_filter: str,
                      watermark: Optional[datetime]) -> Optional[Filter]:
    """Base filter restricted to records modified after the watermark.

    Returns the base filter alone (None when it is blank, i.e. match
    everything) when there is no watermark.
    """
    temporal = builder.modified_after(watermark) if watermark is not None else None
    if temporal is None:
        logger.debug("No previous successful run, requesting a full sync")
    return builder.all_of(builder.native(base_filter), temporal)


def compose_change_filter(builder: FilterBuilder, base_filter: str,
                          watermark: Optional[datetime],
                          failed_ids: Sequence[str]) -> Optional[Filter]:
    """Single predicate covering both failed-item retries and new changes"""
    change_set = change_set_filter(builder, base_filter, watermark)
    if not failed_ids or watermark is None:
        return change_set
    return builder.all_of(
        builder.native(base_filter),
        builder.any_of(builder.id_in(failed_ids), builder.modified_after(watermark))
    )


def render(predicate: Optional[Filter]) -> str:
    """Human readable form of a predicate"""
    if predicate is None:
        return "<all records>"
    if isinstance(predicate, NativeFilter):
        return f"({predicate.expression})"
    if isinstance(predicate, ModifiedAfter):
        return f"modified > {predicate.timestamp.isoformat()}"
    if isinstance(predicate, IdIn):
        return f"id in [{', '.join(predicate.ids)}]"
    if isinstance(predicate, AllOf):
        return "(" + " AND ".join(render(f) for f in predicate.filters) + ")"
    if isinstance(predicate, AnyOf):
        return "(" + " OR ".join(render(f) for f in predicate.filters) + ")"
    raise TypeError(f"Unknown predicate type: {type(predicate).__name__}")
