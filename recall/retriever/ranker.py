"""
Relevance Ranker

Turns search candidates into a deterministically ordered list of
RankedFragments. The final score is the search similarity plus additive
bonuses for intent fit, recency and entity overlap; every weight comes from
RetrievalConfig.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from ..common.config import RetrievalConfig
from ..common.schemas import Fragment, SourceType
from ..common.time_ranges import ensure_utc, utc_now
from .query_processor import ProcessedQuery, QueryIntent
from .searcher import Candidate


@dataclass
class RankedFragment:
    """A fragment with its score breakdown"""
    fragment: Fragment
    similarity_score: float
    intent_bonus: float = 0.0
    recency_bonus: float = 0.0
    source_bonus: float = 0.0
    entity_bonus: float = 0.0
    final_score: float = 0.0
    rank: int = 0
    match_type: str = "vector"

    @property
    def id(self) -> str:
        return self.fragment.id

    @property
    def text(self) -> str:
        return self.fragment.text

    @property
    def source_type(self) -> SourceType:
        return self.fragment.source_type

    @property
    def created_at(self) -> datetime:
        return self.fragment.created_at

    def to_dict(self) -> dict:
        f = self.fragment
        return {
            "id": f.id,
            "rank": self.rank,
            "source_type": f.source_type.value,
            "source_id": f.source_id,
            "text": f.text,
            "person_email": f.person_email,
            "person_name": f.person_name,
            "metadata": dict(f.metadata),
            "created_at": f.created_at.isoformat(),
            "match_type": self.match_type,
            "scores": {
                "similarity": round(self.similarity_score, 4),
                "intent": self.intent_bonus,
                "recency": self.recency_bonus,
                "source": self.source_bonus,
                "entity": self.entity_bonus,
                "final": round(self.final_score, 4),
            },
        }


class RelevanceRanker:
    """
    Scores and orders candidates.

    final = similarity + intent + recency + entity (+ source, if enabled).
    Ties break on newer created_at first, then fragment id.
    """

    def __init__(
        self,
        config: Optional[RetrievalConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config or RetrievalConfig()
        self._clock = clock or utc_now

    def rank(
        self,
        candidates: List[Candidate],
        processed: ProcessedQuery,
        now: Optional[datetime] = None,
    ) -> List[RankedFragment]:
        """
        Score and sort candidates.

        Args:
            candidates: Output of the searcher
            processed: The processed query (intent and entities)
            now: Reference instant for recency

        Returns:
            RankedFragments sorted by final score, ranks assigned from 1
        """
        now = ensure_utc(now or self._clock())
        ranked = [self._score(c, processed, now) for c in candidates]
        ranked.sort(key=lambda r: (-r.final_score, -r.created_at.timestamp(), r.id))
        for position, item in enumerate(ranked, start=1):
            item.rank = position
        return ranked

    def _score(self, candidate: Candidate, processed: ProcessedQuery, now: datetime) -> RankedFragment:
        fragment = candidate.fragment
        intent = self.intent_bonus(fragment, processed.intent)
        recency = self.recency_bonus(fragment, now)
        source = self.source_bonus(fragment)
        entity = self.entity_bonus(fragment, processed)

        final = candidate.similarity_score + intent + recency + entity
        if self._config.include_source_bonus:
            final += source

        return RankedFragment(
            fragment=fragment,
            similarity_score=candidate.similarity_score,
            intent_bonus=intent,
            recency_bonus=recency,
            source_bonus=source,
            entity_bonus=entity,
            final_score=final,
            match_type=candidate.match_type,
        )

    def intent_bonus(self, fragment: Fragment, intent: QueryIntent) -> float:
        if intent == QueryIntent.PERSON and fragment.has_person:
            return self._config.person_intent_boost
        if intent == QueryIntent.COMMUNICATION and fragment.source_type == SourceType.MESSAGE:
            return self._config.communication_intent_boost
        if intent == QueryIntent.CRM and fragment.source_type.is_crm:
            return self._config.crm_intent_boost
        return 0.0

    def recency_bonus(self, fragment: Fragment, now: datetime) -> float:
        days_old = (now - fragment.created_at).total_seconds() / 86400.0
        if days_old <= 7:
            return self._config.recency_week_bonus
        if days_old <= 30:
            return self._config.recency_month_bonus
        if days_old <= 90:
            return self._config.recency_quarter_bonus
        return 0.0

    def source_bonus(self, fragment: Fragment) -> float:
        if fragment.source_type == SourceType.MESSAGE:
            return self._config.message_source_bonus
        if fragment.source_type.is_crm:
            return self._config.crm_source_bonus
        if fragment.source_type == SourceType.CALENDAR_EVENT:
            return self._config.calendar_source_bonus
        return 0.0

    def entity_bonus(self, fragment: Fragment, processed: ProcessedQuery) -> float:
        bonus = 0.0
        name = (fragment.person_name or "").lower()
        if name and any(p.lower() in name for p in processed.entities.people):
            bonus += self._config.person_entity_boost
        email = (fragment.person_email or "").lower()
        if email and any(e.lower() in email for e in processed.entities.emails):
            bonus += self._config.email_entity_boost
        return bonus
