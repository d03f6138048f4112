"""
Retrieval Engine

Single entry point for the retrieval pipeline:

1. Process the query (intent, entities, time references)
2. Dispatch to a strategy
3. Embed the query once (bounded by a timeout; failure degrades to keywords)
4. Search, rank, cap, pack
5. Synthesize a cited answer ("answer" mode) or return fragments ("context" mode)

Request-scoped failures (bad input, store outage, cancellation) come back
as a failed RetrievalResponse rather than an exception.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..common.cancellation import CancellationToken
from ..common.config import RetrievalConfig
from ..common.embedding_service import EmbeddingService
from ..common.errors import ErrorKind, InputError, RecallError
from ..common.fragment_store import FragmentStore, ScalarFilters, coerce_source_type
from ..common.schemas import SourceType
from ..common.time_ranges import ensure_utc, parse_time_range, utc_now
from .packer import ContextPacker
from .query_processor import ProcessedQuery, QueryProcessor, extract_keywords
from .ranker import RankedFragment, RelevanceRanker
from .searcher import Searcher
from .strategies import PatternKind, Strategy, StrategyDispatcher, StrategyKind
from .synthesizer import AnswerStyle, AnswerSynthesizer, SynthesizedAnswer

logger = logging.getLogger("recall.retriever.engine")

HISTORY_WINDOW = 5


class ResponseMode(str, Enum):
    """What the caller wants back"""
    ANSWER = "answer"
    CONTEXT = "context"


class EntityType(str, Enum):
    """Entity kinds supported by retrieve_entity_context"""
    PERSON = "person"
    COMPANY = "company"
    TOPIC = "topic"
    EVENT = "event"


@dataclass
class RetrievalOptions:
    """Per-request knobs; unset values fall back to RetrievalConfig"""
    max_results: Optional[int] = None
    source_filter: Optional[Union[str, Sequence[str]]] = None
    person_filter: Optional[str] = None
    time_range: Any = None  # name, (start, end), {"start", "end"} or TimeRange
    style: Union[AnswerStyle, str] = AnswerStyle.COMPREHENSIVE
    mode: Union[ResponseMode, str] = ResponseMode.ANSWER
    context_window: Optional[int] = None
    confidence_threshold: Optional[float] = None
    cancellation: Optional[CancellationToken] = None


@dataclass
class RetrievalResponse:
    """Outcome of a retrieval request"""
    ok: bool
    query: str
    mode: ResponseMode = ResponseMode.ANSWER
    fragments: List[RankedFragment] = field(default_factory=list)
    answer: Optional[SynthesizedAnswer] = None
    processed: Optional[ProcessedQuery] = None
    strategy: Optional[Strategy] = None
    total_tokens: int = 0
    degraded: bool = False
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ok": self.ok, "query": self.query, "mode": self.mode.value}
        if not self.ok:
            data["error"] = self.error
            data["error_kind"] = self.error_kind.value if self.error_kind else None
            return data

        if self.mode == ResponseMode.ANSWER and self.answer is not None:
            data.update(self.answer.to_dict())
            # keyword matches stay visible when the answer could not use them
            if self.degraded:
                data["fragments"] = [f.to_dict() for f in self.fragments]
        else:
            data["fragments"] = [f.to_dict() for f in self.fragments]
        data["result_count"] = len(self.fragments)
        data["total_tokens"] = self.total_tokens
        data["degraded"] = self.degraded
        if self.processed is not None:
            data["intent"] = self.processed.intent.value
        if self.strategy is not None:
            data["strategy"] = self.strategy.to_dict()
        if self.warnings:
            data["warnings"] = data.get("warnings", []) + list(self.warnings)
        return data


class RetrievalEngine:
    """
    Orchestrates QueryProcessor, StrategyDispatcher, Searcher,
    RelevanceRanker, ContextPacker and AnswerSynthesizer for one owner-scoped
    request at a time. Holds no per-request state, so concurrent calls are safe.
    """

    def __init__(
        self,
        store: FragmentStore,
        embedding_service: Optional[EmbeddingService] = None,
        config: Optional[RetrievalConfig] = None,
        query_processor: Optional[QueryProcessor] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Fragment store to read from
            embedding_service: Query embedder; None means keyword-only retrieval
            config: Limits, weights and thresholds
            query_processor: Custom processor (e.g. with another EntityExtractor)
            clock: Reference clock for recency and time windows
        """
        self._store = store
        self._embedding = embedding_service
        self._config = config or RetrievalConfig()
        self._clock = clock or utc_now
        self._processor = query_processor or QueryProcessor()
        self._dispatcher = StrategyDispatcher(clock=self._clock)
        self._searcher = Searcher(store, self._config, clock=self._clock)
        self._ranker = RelevanceRanker(self._config, clock=self._clock)
        self._synthesizer = AnswerSynthesizer(
            confidence_threshold=self._config.confidence_threshold,
            clock=self._clock,
        )

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    @property
    def synthesizer(self) -> AnswerSynthesizer:
        return self._synthesizer

    @property
    def store(self) -> FragmentStore:
        return self._store

    async def retrieve(
        self,
        owner: str,
        query: str,
        options: Optional[RetrievalOptions] = None,
    ) -> RetrievalResponse:
        """
        Answer a natural-language query over one owner's fragments.

        Args:
            owner: Tenant id; only this owner's fragments are considered
            query: Natural-language question
            options: Filters, limits, style and mode

        Returns:
            RetrievalResponse (ok=False with error_kind on request failures)
        """
        return await self._run(owner, query, options or RetrievalOptions())

    async def retrieve_with_strategy(
        self,
        owner: str,
        query: str,
        strategy: Strategy,
        options: Optional[RetrievalOptions] = None,
    ) -> RetrievalResponse:
        """Run the pipeline with a caller-chosen strategy instead of dispatch"""
        return await self._run(owner, query, options or RetrievalOptions(), strategy_override=strategy)

    async def retrieve_with_history(
        self,
        owner: str,
        query: str,
        history: Sequence[Union[str, Dict[str, Any]]],
        options: Optional[RetrievalOptions] = None,
    ) -> RetrievalResponse:
        """
        Retrieve with people and keywords from recent conversation turns.

        Only the last five turns are used. The query's own intent decides
        the strategy. People named in history join the query's entities
        (so "who is she?" can resolve to a person search), and history
        keywords are added to the embedded text but not to keyword matching.
        """
        turns = []
        for turn in list(history or [])[-HISTORY_WINDOW:]:
            text = turn.get("content", "") if isinstance(turn, dict) else str(turn)
            if text and text.strip():
                turns.append(text)

        people: List[str] = []
        keywords: List[str] = []
        extractor = self._processor.entity_extractor
        for text in turns:
            for name in extractor.extract(text).people:
                if name not in people:
                    people.append(name)
            for word in extract_keywords(text):
                if word not in keywords:
                    keywords.append(word)

        return await self._run(
            owner, query, options or RetrievalOptions(),
            context_people=people, context_keywords=keywords,
        )

    async def retrieve_entity_context(
        self,
        owner: str,
        entity_type: str,
        name: str,
        options: Optional[RetrievalOptions] = None,
    ) -> RetrievalResponse:
        """
        Gather context about a person, company, topic or event.

        Unknown entity types produce an input-error response.
        """
        options = options or RetrievalOptions(mode=ResponseMode.CONTEXT)
        try:
            kind = EntityType(str(entity_type).lower())
        except ValueError:
            valid = ", ".join(e.value for e in EntityType)
            return self._failure(name, options, InputError(
                f"Unknown entity type '{entity_type}' (expected one of: {valid})"
            ))

        if kind == EntityType.PERSON:
            strategy = Strategy(kind=StrategyKind.PERSON_SEARCH, person=name)
        elif kind == EntityType.COMPANY:
            strategy = Strategy(kind=StrategyKind.PATTERN_SEARCH, pattern=PatternKind.CONTACT_RELATED, query=name)
        elif kind == EntityType.EVENT:
            strategy = Strategy(kind=StrategyKind.SOURCE_FILTERED, query=name, source=SourceType.CALENDAR_EVENT)
        else:
            strategy = Strategy(kind=StrategyKind.HYBRID_SEARCH, query=name)

        return await self._run(owner, name, options, strategy_override=strategy)

    def statistics(self, owner: str) -> Dict[str, Any]:
        """Fragment counts for an owner, in tool-result shape"""
        try:
            stats = self._store.statistics(owner, now=self._clock())
        except RecallError as e:
            logger.warning("Statistics failed for owner: %s", e)
            return {"ok": False, "error": str(e), "error_kind": e.kind.value}
        return {"ok": True, **stats}

    # ------------------------------------------------------------------ #
    # Pipeline
    # ------------------------------------------------------------------ #

    async def _run(
        self,
        owner: str,
        query: str,
        options: RetrievalOptions,
        strategy_override: Optional[Strategy] = None,
        context_people: Sequence[str] = (),
        context_keywords: Sequence[str] = (),
    ) -> RetrievalResponse:
        token = options.cancellation or CancellationToken()
        now = ensure_utc(self._clock())
        processed: Optional[ProcessedQuery] = None
        strategy: Optional[Strategy] = None

        try:
            mode, style, max_results = self._validate(owner, query, options, self._config.max_results)

            processed = self._processor.process(query)
            for name in context_people:
                if name not in processed.entities.people:
                    processed.entities.people.append(name)
            for word in context_keywords:
                if word not in processed.keywords:
                    processed.keywords.append(word)

            strategy = strategy_override or self._dispatcher.dispatch(processed, now)
            strategy, filters = self._apply_options(strategy, options, now)

            warnings: List[str] = []
            embedding = None
            degraded = False
            if self._needs_embedding(strategy):
                embed_text = " ".join([processed.original, *context_people, *context_keywords]).strip()
                embedding, reason = await self._embed(embed_text, token)
                if embedding is None:
                    degraded = True
                    warnings.append(f"Semantic search unavailable ({reason}); used keyword matching")

            limit = min(max(max_results, self._config.default_limit), self._config.max_limit)
            candidates = await self._searcher.run(
                strategy, owner, embedding, filters, limit, token, now
            )

            ranked = self._ranker.rank(candidates, processed, now)[:max_results]
            window = options.context_window if options.context_window is not None else self._config.context_window
            packed = ContextPacker(window).pack(ranked)

            answer = None
            if mode == ResponseMode.ANSWER:
                token.raise_if_cancelled("synthesis")
                answer = self._synthesizer.synthesize(
                    processed.original,
                    packed.fragments,
                    style=style,
                    confidence_threshold=options.confidence_threshold,
                    processed=processed,
                )

            logger.info(
                "Retrieved %d/%d fragment(s) via %s (degraded=%s)",
                len(packed.fragments), len(candidates), strategy.kind.value, degraded,
            )
            return RetrievalResponse(
                ok=True,
                query=processed.original,
                mode=mode,
                fragments=packed.fragments,
                answer=answer,
                processed=processed,
                strategy=strategy,
                total_tokens=packed.total_tokens,
                degraded=degraded,
                warnings=warnings,
            )
        except RecallError as e:
            return self._failure(query, options, e, processed, strategy)

    def _failure(
        self,
        query: str,
        options: RetrievalOptions,
        error: RecallError,
        processed: Optional[ProcessedQuery] = None,
        strategy: Optional[Strategy] = None,
    ) -> RetrievalResponse:
        logger.warning("Retrieval failed (%s): %s", error.kind.value, error)
        try:
            mode = ResponseMode(options.mode)
        except ValueError:
            mode = ResponseMode.ANSWER
        return RetrievalResponse(
            ok=False,
            query=(query or "").strip(),
            mode=mode,
            processed=processed,
            strategy=strategy,
            error=str(error),
            error_kind=error.kind,
        )

    @staticmethod
    def _validate(owner: str, query: str, options: RetrievalOptions, default_max: int):
        if not owner:
            raise InputError("owner is required")
        if not query or not query.strip():
            raise InputError("query must not be empty")
        max_results = options.max_results if options.max_results is not None else default_max
        if max_results < 1:
            raise InputError("max_results must be at least 1")
        if options.context_window is not None and options.context_window < 0:
            raise InputError("context_window must be non-negative")
        try:
            mode = ResponseMode(options.mode)
        except ValueError:
            raise InputError(f"Unknown mode '{options.mode}' (expected 'answer' or 'context')")
        try:
            style = AnswerStyle(options.style)
        except ValueError:
            valid = ", ".join(s.value for s in AnswerStyle)
            raise InputError(f"Unknown style '{options.style}' (expected one of: {valid})")
        return mode, style, max_results

    @staticmethod
    def _apply_options(strategy: Strategy, options: RetrievalOptions, now: datetime):
        """Fold caller filters into scalar filters (and the temporal window)"""
        filters = ScalarFilters()

        if options.source_filter:
            requested = options.source_filter
            if isinstance(requested, (str, SourceType)):
                requested = [requested]
            sources = [coerce_source_type(s).value for s in requested]
            allowed = strategy.source_types
            if allowed is not None and not set(sources) & set(allowed):
                raise InputError(
                    f"Source filter {sources} excludes every source searched by "
                    f"{strategy.kind.value} ({allowed})"
                )
            filters.source_types = sources

        if options.person_filter:
            person = options.person_filter.strip()
            if "@" in person:
                filters.person_email = person
            else:
                filters.person_like = person

        time_range = parse_time_range(options.time_range, now)
        if time_range is not None:
            filters.start = time_range.start
            filters.end = time_range.end
            if strategy.kind == StrategyKind.TEMPORAL_SEARCH:
                strategy = strategy.with_time_range(time_range)

        return strategy, filters

    @staticmethod
    def _needs_embedding(strategy: Strategy) -> bool:
        if strategy.kind == StrategyKind.PERSON_SEARCH:
            return False
        if strategy.kind == StrategyKind.SCHEDULING_CONTEXT and strategy.participants:
            return False
        return True

    async def _embed(self, text: str, token: CancellationToken):
        """Query embedding, or (None, reason) on any failure"""
        if self._embedding is None:
            return None, "no embedding service configured"

        token.raise_if_cancelled("embedding")
        timeout = self._config.embedding_timeout
        remaining = token.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)

        try:
            embedding = await asyncio.wait_for(
                asyncio.to_thread(self._embedding.embed_single, text),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Query embedding timed out after %.1fs", timeout)
            return None, "embedding timed out"
        except Exception as e:
            logger.warning("Query embedding failed: %s", e)
            return None, "embedding failed"

        if embedding is None or len(embedding) == 0:
            return None, "empty embedding"
        return list(embedding), None
