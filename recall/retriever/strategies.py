"""
Strategy Dispatcher

Maps a processed query to exactly one retrieval strategy. The strategy only
decides which filters, embeddings and lookups feed the candidate set;
ranking, packing and synthesis are the same for every strategy.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..common.schemas import SourceType
from ..common.time_ranges import TimeRange, range_from_references, utc_now
from .query_processor import ProcessedQuery, QueryIntent

logger = logging.getLogger("recall.retriever.strategies")


class StrategyKind(str, Enum):
    """Closed set of retrieval strategies"""
    PERSON_SEARCH = "person_search"
    TEMPORAL_SEARCH = "temporal_search"
    PATTERN_SEARCH = "pattern_search"
    SCHEDULING_CONTEXT = "scheduling_context"
    SOURCE_FILTERED = "source_filtered"
    HYBRID_SEARCH = "hybrid_search"


class PatternKind(str, Enum):
    """Canned query shapes handled by pattern search"""
    WHO_MENTIONED = "who_mentioned"
    EMAILS_ABOUT = "emails_about"
    RECENT_ACTIVITY = "recent_activity"
    CONTACT_RELATED = "contact_related"


@dataclass(frozen=True)
class Strategy:
    """A tagged strategy; only the fields relevant to ``kind`` are set"""
    kind: StrategyKind
    query: str = ""
    person: str = ""
    pattern: Optional[PatternKind] = None
    time_range: Optional[TimeRange] = None
    participants: Tuple[str, ...] = field(default_factory=tuple)
    source: Optional[SourceType] = None

    @property
    def source_types(self) -> Optional[List[str]]:
        """Source types this strategy is restricted to, if any"""
        if self.kind == StrategyKind.SOURCE_FILTERED and self.source is not None:
            return [self.source.value]
        if self.kind == StrategyKind.PATTERN_SEARCH:
            if self.pattern == PatternKind.EMAILS_ABOUT:
                return [SourceType.MESSAGE.value]
            if self.pattern == PatternKind.CONTACT_RELATED:
                return [SourceType.MESSAGE.value, SourceType.CRM_CONTACT.value, SourceType.CRM_NOTE.value]
        return None

    def with_time_range(self, time_range: TimeRange) -> "Strategy":
        return replace(self, time_range=time_range)

    def to_dict(self) -> dict:
        data = {"kind": self.kind.value}
        if self.query:
            data["query"] = self.query
        if self.person:
            data["person"] = self.person
        if self.pattern is not None:
            data["pattern"] = self.pattern.value
        if self.time_range is not None:
            data["time_range"] = self.time_range.to_dict()
        if self.participants:
            data["participants"] = list(self.participants)
        if self.source is not None:
            data["source"] = self.source.value
        return data


class StrategyDispatcher:
    """
    Chooses a Strategy from a ProcessedQuery.

    Every QueryIntent must have a builder; a missing one is a programming
    error and fails at construction rather than at query time.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._builders: Dict[QueryIntent, Callable[[ProcessedQuery, datetime], Strategy]] = {
            QueryIntent.PERSON: self._person,
            QueryIntent.TEMPORAL: self._temporal,
            QueryIntent.SCHEDULING: self._scheduling,
            QueryIntent.COMMUNICATION: self._communication,
            QueryIntent.CRM: self._crm,
            QueryIntent.LOCATION: self._hybrid,
            QueryIntent.INFORMATION: self._hybrid,
            QueryIntent.PROCEDURAL: self._hybrid,
            QueryIntent.GENERAL: self._hybrid,
        }
        missing = [intent.value for intent in QueryIntent if intent not in self._builders]
        if missing:
            raise RuntimeError(f"No strategy for intent(s): {', '.join(missing)}")

    def dispatch(self, processed: ProcessedQuery, now: Optional[datetime] = None) -> Strategy:
        """
        Pick the strategy for a processed query.

        Args:
            processed: Output of QueryProcessor.process
            now: Reference instant for derived time ranges

        Returns:
            Strategy
        """
        strategy = self._builders[processed.intent](processed, now or self._clock())
        logger.debug("Intent %s -> %s", processed.intent.value, strategy.kind.value)
        return strategy

    @staticmethod
    def _person(processed: ProcessedQuery, now: datetime) -> Strategy:
        if processed.person_name:
            return Strategy(kind=StrategyKind.PERSON_SEARCH, person=processed.person_name)
        return Strategy(
            kind=StrategyKind.PATTERN_SEARCH,
            pattern=PatternKind.WHO_MENTIONED,
            query=processed.original,
        )

    @staticmethod
    def _temporal(processed: ProcessedQuery, now: datetime) -> Strategy:
        return Strategy(
            kind=StrategyKind.TEMPORAL_SEARCH,
            query=processed.normalized,
            time_range=range_from_references(processed.time_references, now),
        )

    @staticmethod
    def _scheduling(processed: ProcessedQuery, now: datetime) -> Strategy:
        return Strategy(
            kind=StrategyKind.SCHEDULING_CONTEXT,
            query=processed.normalized,
            participants=tuple(processed.entities.people) + tuple(processed.entities.emails),
        )

    @staticmethod
    def _communication(processed: ProcessedQuery, now: datetime) -> Strategy:
        return Strategy(
            kind=StrategyKind.SOURCE_FILTERED,
            query=processed.normalized,
            source=SourceType.MESSAGE,
        )

    @staticmethod
    def _crm(processed: ProcessedQuery, now: datetime) -> Strategy:
        return Strategy(
            kind=StrategyKind.SOURCE_FILTERED,
            query=processed.normalized,
            source=SourceType.CRM_CONTACT,
        )

    @staticmethod
    def _hybrid(processed: ProcessedQuery, now: datetime) -> Strategy:
        return Strategy(kind=StrategyKind.HYBRID_SEARCH, query=processed.normalized)
