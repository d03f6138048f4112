"""
Searcher

Similarity and scalar lookups against the FragmentStore.
Vector search is the primary path; keyword search is a coarse fallback for
when no query embedding is available, and a small boost on top of vector
scores in hybrid mode. Every store call is preceded by a cancellation check.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from ..common.cancellation import CancellationToken
from ..common.config import RetrievalConfig
from ..common.fragment_store import FragmentStore, ScalarFilters, StoreHit
from ..common.schemas import Fragment, SourceType
from ..common.time_ranges import TimeRange, named_range, utc_now
from .query_processor import extract_keywords
from .strategies import PatternKind, Strategy, StrategyKind

logger = logging.getLogger("recall.retriever.searcher")

PERSON_EMAIL_SCORE = 1.0
PERSON_NAME_SCORE = 0.9
PERSON_TEXT_SCORE = 0.7
PERSON_OTHER_SCORE = 0.3

SCHEDULING_PARTICIPANT_LIMIT = 3
SCHEDULING_MESSAGE_LIMIT = 5


@dataclass
class Candidate:
    """A fragment found by a search, before ranking"""
    fragment: Fragment
    similarity_score: float
    vector_score: float = 0.0
    keyword_score: float = 0.0
    match_type: str = "vector"  # vector | keyword | hybrid | person

    @property
    def id(self) -> str:
        return self.fragment.id


def keyword_score(text: str, keywords: Sequence[str]) -> float:
    """Share of keywords present, damped for short texts"""
    if not keywords:
        return 0.0
    lowered = text.lower()
    matches = sum(1 for kw in keywords if kw in lowered)
    word_count = len(text.split())
    return (matches / len(keywords)) * min(word_count / 100.0, 1.0)


def person_score(fragment: Fragment, identifier: str) -> float:
    """How directly a fragment is about the given person"""
    needle = identifier.lower()
    if fragment.person_email and needle in fragment.person_email.lower():
        return PERSON_EMAIL_SCORE
    if fragment.person_name and needle in fragment.person_name.lower():
        return PERSON_NAME_SCORE
    if needle in fragment.text.lower():
        return PERSON_TEXT_SCORE
    return PERSON_OTHER_SCORE


def merge_candidates(groups: List[List[Candidate]]) -> List[Candidate]:
    """Flatten candidate lists, keeping the best-scoring entry per fragment"""
    best: Dict[str, Candidate] = {}
    order: List[str] = []
    for group in groups:
        for candidate in group:
            current = best.get(candidate.id)
            if current is None:
                best[candidate.id] = candidate
                order.append(candidate.id)
            elif candidate.similarity_score > current.similarity_score:
                best[candidate.id] = candidate
    return [best[i] for i in order]


class Searcher:
    """
    Runs retrieval strategies against a FragmentStore.

    Modes:
    - vector: cosine distance over embedded fragments
    - keyword: substring match on significant tokens
    - hybrid: vector + keyword_boost * keyword
    - temporal / source-filtered: the above under extra scalar bounds
    - person: scalar match on identity fields and text
    - pattern / scheduling: compositions of the above
    """

    def __init__(
        self,
        store: FragmentStore,
        config: Optional[RetrievalConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize searcher.

        Args:
            store: Fragment store to query
            config: Retrieval defaults (limits, keyword boost)
            clock: Reference clock for relative windows
        """
        self._store = store
        self._config = config or RetrievalConfig()
        self._clock = clock or utc_now

    def _limit(self, limit: Optional[int]) -> int:
        limit = limit or self._config.default_limit
        return max(1, min(limit, self._config.max_limit))

    def _query(
        self,
        owner: str,
        vector: Optional[List[float]],
        filters: ScalarFilters,
        limit: int,
        token: Optional[CancellationToken],
    ) -> List[StoreHit]:
        if token is not None:
            token.raise_if_cancelled("store query")
        return self._store.query(owner, vector=vector, filters=filters, limit=limit)

    # ------------------------------------------------------------------ #
    # Primitive modes
    # ------------------------------------------------------------------ #

    async def vector_search(
        self,
        owner: str,
        embedding: List[float],
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Nearest embedded fragments; similarity = 1 - cosine distance"""
        hits = self._query(owner, embedding, filters or ScalarFilters(), self._limit(limit), token)
        return [
            Candidate(
                fragment=hit.fragment,
                similarity_score=hit.similarity,
                vector_score=hit.similarity,
                match_type="vector",
            )
            for hit in hits
        ]

    async def keyword_search(
        self,
        owner: str,
        query: str,
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """
        Coarse keyword match.

        Fetches fragments containing the first keyword (twice the limit),
        keeps those containing every other keyword, and scores by keyword
        share damped by length.
        """
        keywords = extract_keywords(query)
        if not keywords:
            return []

        limit = self._limit(limit)
        first, rest = keywords[0], keywords[1:]
        scoped = (filters or ScalarFilters()).merged(ScalarFilters(text_contains=first))
        hits = self._query(owner, None, scoped, limit * 2, token)

        candidates = []
        for hit in hits:
            lowered = hit.fragment.text.lower()
            if not all(kw in lowered for kw in rest):
                continue
            score = keyword_score(hit.fragment.text, keywords)
            candidates.append(Candidate(
                fragment=hit.fragment,
                similarity_score=score,
                keyword_score=score,
                match_type="keyword",
            ))

        candidates.sort(key=lambda c: c.similarity_score, reverse=True)
        return candidates[:limit]

    async def hybrid_search(
        self,
        owner: str,
        query: str,
        embedding: Optional[List[float]],
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Vector and keyword results unioned by id with keyword as a boost"""
        if embedding is None:
            return await self.keyword_search(owner, query, filters, limit, token)

        vector_hits = await self.vector_search(owner, embedding, filters, limit, token)
        keyword_hits = await self.keyword_search(owner, query, filters, limit, token)

        combined: Dict[str, Candidate] = {}
        for c in vector_hits:
            combined[c.id] = Candidate(
                fragment=c.fragment,
                similarity_score=c.vector_score,
                vector_score=c.vector_score,
                match_type="vector",
            )
        for c in keyword_hits:
            entry = combined.get(c.id)
            if entry is None:
                entry = Candidate(fragment=c.fragment, similarity_score=0.0, match_type="keyword")
                combined[c.id] = entry
            else:
                entry.match_type = "hybrid"
            entry.keyword_score = c.keyword_score

        for entry in combined.values():
            entry.similarity_score = entry.vector_score + entry.keyword_score * self._config.keyword_boost

        results = sorted(combined.values(), key=lambda c: c.similarity_score, reverse=True)
        return results[:self._limit(limit)]

    async def person_search(
        self,
        owner: str,
        identifier: str,
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Fragments mentioning a person, most recent first, person-scored"""
        identifier = (identifier or "").strip()
        if not identifier:
            return []

        scoped = (filters or ScalarFilters()).merged(ScalarFilters(person_like=identifier))
        hits = self._query(owner, None, scoped, self._limit(limit), token)
        return [
            Candidate(
                fragment=hit.fragment,
                similarity_score=person_score(hit.fragment, identifier),
                match_type="person",
            )
            for hit in hits
        ]

    # ------------------------------------------------------------------ #
    # Composite modes
    # ------------------------------------------------------------------ #

    async def temporal_search(
        self,
        owner: str,
        query: str,
        embedding: Optional[List[float]],
        time_range: TimeRange,
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Vector search bounded to a created_at window (keyword without embedding)"""
        bounded = (filters or ScalarFilters()).merged(
            ScalarFilters(start=time_range.start, end=time_range.end)
        )
        if embedding is None:
            return await self.keyword_search(owner, query, bounded, limit, token)
        return await self.vector_search(owner, embedding, bounded, limit, token)

    async def source_filtered_search(
        self,
        owner: str,
        query: str,
        embedding: Optional[List[float]],
        source_types: List[str],
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """Vector (or keyword) search restricted to source types"""
        scoped = (filters or ScalarFilters()).merged(ScalarFilters(source_types=list(source_types)))
        if embedding is None:
            return await self.keyword_search(owner, query, scoped, limit, token)
        return await self.vector_search(owner, embedding, scoped, limit, token)

    async def pattern_search(
        self,
        owner: str,
        pattern: PatternKind,
        query: str,
        embedding: Optional[List[float]],
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> List[Candidate]:
        """Canned query shapes: who_mentioned, emails_about, recent_activity, contact_related"""
        if pattern == PatternKind.WHO_MENTIONED:
            match = re.search(r"who\s+mentioned\s+(.+?)[\s?.!]*$", query, re.IGNORECASE)
            if match:
                return await self.person_search(owner, match.group(1), filters, limit, token)
            return await self.hybrid_search(owner, query, embedding, filters, limit, token)

        if pattern == PatternKind.EMAILS_ABOUT:
            match = re.search(r"emails?\s+about\s+(.+?)[\s?.!]*$", query, re.IGNORECASE)
            topic = match.group(1) if match else query
            return await self.source_filtered_search(
                owner, topic, embedding, [SourceType.MESSAGE.value], filters, limit, token
            )

        if pattern == PatternKind.RECENT_ACTIVITY:
            window = named_range("recent", now or self._clock())
            return await self.temporal_search(owner, query, embedding, window, filters, limit, token)

        if pattern == PatternKind.CONTACT_RELATED:
            sources = [SourceType.MESSAGE.value, SourceType.CRM_CONTACT.value, SourceType.CRM_NOTE.value]
            scoped = (filters or ScalarFilters()).merged(ScalarFilters(source_types=sources))
            return await self.hybrid_search(owner, query, embedding, scoped, limit, token)

        raise ValueError(f"Unknown pattern: {pattern}")

    async def scheduling_context(
        self,
        owner: str,
        participants: Sequence[str],
        query: str,
        embedding: Optional[List[float]],
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Candidate]:
        """
        Context for arranging a meeting.

        Per participant: their most relevant fragments plus recent messages
        with them. Without participants: calendar events and messages
        matching the query.
        """
        groups: List[List[Candidate]] = []
        if participants:
            messages_only = (filters or ScalarFilters()).merged(
                ScalarFilters(source_types=[SourceType.MESSAGE.value])
            )
            for participant in participants:
                groups.append(await self.person_search(
                    owner, participant, filters, SCHEDULING_PARTICIPANT_LIMIT, token
                ))
                groups.append(await self.person_search(
                    owner, participant, messages_only, SCHEDULING_MESSAGE_LIMIT, token
                ))
        else:
            sources = [SourceType.CALENDAR_EVENT.value, SourceType.MESSAGE.value]
            groups.append(await self.source_filtered_search(
                owner, query, embedding, sources, filters, limit, token
            ))

        return merge_candidates(groups)

    # ------------------------------------------------------------------ #
    # Strategy execution
    # ------------------------------------------------------------------ #

    async def run(
        self,
        strategy: Strategy,
        owner: str,
        embedding: Optional[List[float]] = None,
        filters: Optional[ScalarFilters] = None,
        limit: Optional[int] = None,
        token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> List[Candidate]:
        """
        Execute a strategy and return its flat candidate list.

        Args:
            strategy: Strategy chosen by the dispatcher
            owner: Tenant whose fragments are searched
            embedding: Query embedding, or None when unavailable
            filters: Caller-supplied scalar filters, AND-ed with the strategy's
            limit: Candidate cap (default from config, hard ceiling max_limit)
            token: Cancellation token checked before each store call
            now: Reference instant for relative windows

        Returns:
            List of Candidate objects
        """
        kind = strategy.kind
        if kind == StrategyKind.PERSON_SEARCH:
            results = await self.person_search(owner, strategy.person, filters, limit, token)
        elif kind == StrategyKind.TEMPORAL_SEARCH:
            window = strategy.time_range or named_range("recent", now or self._clock())
            results = await self.temporal_search(
                owner, strategy.query, embedding, window, filters, limit, token
            )
        elif kind == StrategyKind.PATTERN_SEARCH:
            results = await self.pattern_search(
                owner, strategy.pattern, strategy.query, embedding, filters, limit, token, now
            )
        elif kind == StrategyKind.SCHEDULING_CONTEXT:
            results = await self.scheduling_context(
                owner, strategy.participants, strategy.query, embedding, filters, limit, token
            )
        elif kind == StrategyKind.SOURCE_FILTERED:
            results = await self.source_filtered_search(
                owner, strategy.query, embedding, strategy.source_types, filters, limit, token
            )
        elif kind == StrategyKind.HYBRID_SEARCH:
            results = await self.hybrid_search(owner, strategy.query, embedding, filters, limit, token)
        else:
            raise ValueError(f"Unhandled strategy kind: {kind}")

        logger.debug("%s returned %d candidate(s)", kind.value, len(results))
        return results
