"""
Tool Handlers

Agent-facing tool operations over the retrieval engine. Each handler takes
plain arguments (as an orchestrator or MCP client would send them) and
returns a JSON-serializable dict with an ``ok`` flag; failures carry an
``error`` message instead of raising.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..common.embedding_service import EmbeddingService
from ..common.errors import RecallError
from ..common.schemas import SourceType
from ..common.time_ranges import parse_date
from ..retriever.engine import RetrievalEngine, RetrievalOptions, RetrievalResponse, ResponseMode
from ..retriever.query_processor import RegexEntityExtractor
from ..retriever.ranker import RankedFragment
from ..retriever.strategies import PatternKind, Strategy, StrategyKind
from ..retriever.synthesizer import AnswerStyle, extract_snippet, format_citation

logger = logging.getLogger("recall.tools")

SEARCH_TYPES = ("general", "person", "temporal", "contact", "scheduling")
EMAIL_DATE_RANGES = ("last_week", "last_month", "last_quarter", "custom")
CALENDAR_DATE_RANGES = ("this_week", "this_month", "this_year", "custom")
WHEN_TIMEFRAMES = ("recent", "this_week", "this_month", "last_month", "this_year", "all_time")
EVENT_TYPES = ("meeting", "call", "appointment", "deadline")


def _failure(response: RetrievalResponse) -> Dict[str, Any]:
    return {
        "ok": False,
        "error": response.error,
        "error_kind": response.error_kind.value if response.error_kind else None,
    }


def _date_range(date_range: Optional[str], start_date: Optional[str], end_date: Optional[str]):
    """Tool-style date range (named or "custom") to an engine time_range"""
    if not date_range:
        return None
    if date_range == "custom":
        return {"start": start_date, "end": end_date}
    return date_range


def _fragment_summary(item: RankedFragment) -> Dict[str, Any]:
    fragment = item.fragment
    return {
        "id": fragment.id,
        "text": extract_snippet(fragment.text),
        "source_type": fragment.source_type.value,
        "source_id": fragment.source_id,
        "person_name": fragment.person_name,
        "person_email": fragment.person_email,
        "date": fragment.created_at.isoformat(),
        "confidence": round(item.final_score, 4),
        "citation": format_citation(item),
    }


class RecallTools:
    """
    Tool executors for an agent orchestrator.

    Read tools: search_rag, find_people, search_emails, search_calendar,
    find_mentions, when_search, statistics.
    Write tools: upsert_fragment, delete_source.
    """

    def __init__(self, engine: RetrievalEngine, embedding_service: Optional[EmbeddingService] = None):
        """
        Args:
            engine: Retrieval engine (owns the fragment store)
            embedding_service: Used to embed fragments on upsert; optional
        """
        self._engine = engine
        self._embedding = embedding_service
        self._extractor = RegexEntityExtractor()

    # ------------------------------------------------------------------ #
    # Read tools
    # ------------------------------------------------------------------ #

    async def search_rag(
        self,
        owner: str,
        query: str,
        search_type: str = "general",
        max_results: int = 10,
        time_range: Optional[str] = None,
        style: str = AnswerStyle.COMPREHENSIVE.value,
    ) -> Dict[str, Any]:
        """General retrieval with a cited answer; search_type forces a strategy"""
        if search_type not in SEARCH_TYPES:
            return {"ok": False, "error": f"Unknown search_type '{search_type}'", "error_kind": "input"}

        options = RetrievalOptions(max_results=max_results, time_range=time_range, style=style)
        strategy = None
        if search_type == "person":
            people = self._extractor.extract(query).people
            if people:
                strategy = Strategy(kind=StrategyKind.PERSON_SEARCH, person=people[0])
            else:
                strategy = Strategy(kind=StrategyKind.PATTERN_SEARCH, pattern=PatternKind.WHO_MENTIONED, query=query)
        elif search_type == "temporal":
            strategy = Strategy(kind=StrategyKind.PATTERN_SEARCH, pattern=PatternKind.RECENT_ACTIVITY, query=query)
        elif search_type == "contact":
            strategy = Strategy(kind=StrategyKind.PERSON_SEARCH, person=query)
        elif search_type == "scheduling":
            strategy = Strategy(kind=StrategyKind.PATTERN_SEARCH, pattern=PatternKind.CONTACT_RELATED, query=query)

        if strategy is None:
            response = await self._engine.retrieve(owner, query, options)
        else:
            response = await self._engine.retrieve_with_strategy(owner, query, strategy, options)

        if not response.ok:
            return _failure(response)
        return response.to_dict()

    async def find_people(
        self,
        owner: str,
        person_identifier: str,
        include_communications: bool = True,
        max_communications: int = 5,
    ) -> Dict[str, Any]:
        """Who a person is, plus recent messages with them"""
        strategy = Strategy(kind=StrategyKind.PERSON_SEARCH, person=person_identifier)
        options = RetrievalOptions(max_results=max_communications, mode=ResponseMode.CONTEXT)
        response = await self._engine.retrieve_with_strategy(owner, person_identifier, strategy, options)
        if not response.ok:
            return _failure(response)

        results = response.fragments
        if not results:
            return {
                "ok": True,
                "found": False,
                "person": None,
                "communications": [],
                "result_count": 0,
                "message": f"Person '{person_identifier}' not found in your data",
            }

        top = results[0].fragment
        person = {
            "name": top.person_name or person_identifier,
            "email": top.person_email,
            "source_count": len(results),
            "last_contact": max(r.created_at for r in results).isoformat(),
            "confidence": round(results[0].similarity_score, 4),
        }

        communications = []
        if include_communications:
            comm_options = RetrievalOptions(
                max_results=max_communications,
                mode=ResponseMode.CONTEXT,
                source_filter=SourceType.MESSAGE.value,
            )
            comm = await self._engine.retrieve_with_strategy(owner, person_identifier, strategy, comm_options)
            if comm.ok:
                communications = [_fragment_summary(r) for r in comm.fragments]

        contact = self._engine.synthesizer.build_contact_answer(person_identifier, results)
        return {
            "ok": True,
            "found": True,
            "person": person,
            "communications": communications,
            "summary": contact.answer,
            "result_count": len(results),
        }

    async def search_emails(
        self,
        owner: str,
        query: str,
        sender: Optional[str] = None,
        date_range: Optional[str] = None,
        custom_start_date: Optional[str] = None,
        custom_end_date: Optional[str] = None,
        max_results: int = 10,
    ) -> Dict[str, Any]:
        """Message fragments matching the query, optionally by sender and date"""
        if date_range and date_range not in EMAIL_DATE_RANGES:
            return {"ok": False, "error": f"Unknown date_range '{date_range}'", "error_kind": "input"}

        strategy = Strategy(kind=StrategyKind.SOURCE_FILTERED, query=query, source=SourceType.MESSAGE)
        options = RetrievalOptions(
            max_results=max_results,
            mode=ResponseMode.CONTEXT,
            person_filter=sender,
            time_range=_date_range(date_range, custom_start_date, custom_end_date),
        )
        response = await self._engine.retrieve_with_strategy(owner, query, strategy, options)
        if not response.ok:
            return _failure(response)

        emails = [_fragment_summary(r) for r in response.fragments]
        return {
            "ok": True,
            "emails": emails,
            "found": bool(emails),
            "result_count": len(emails),
            "search_terms": query,
            "degraded": response.degraded,
        }

    async def search_calendar(
        self,
        owner: str,
        query: str,
        attendees: Optional[List[str]] = None,
        date_range: Optional[str] = None,
        custom_start_date: Optional[str] = None,
        custom_end_date: Optional[str] = None,
        event_type: Optional[str] = None,
        max_results: int = 10,
    ) -> Dict[str, Any]:
        """Calendar fragments matching the query, filtered by attendees and event type"""
        if date_range and date_range not in CALENDAR_DATE_RANGES:
            return {"ok": False, "error": f"Unknown date_range '{date_range}'", "error_kind": "input"}
        if event_type and event_type not in EVENT_TYPES:
            return {"ok": False, "error": f"Unknown event_type '{event_type}'", "error_kind": "input"}

        strategy = Strategy(kind=StrategyKind.SOURCE_FILTERED, query=query, source=SourceType.CALENDAR_EVENT)
        options = RetrievalOptions(
            max_results=self._engine.config.max_limit,
            mode=ResponseMode.CONTEXT,
            time_range=_date_range(date_range, custom_start_date, custom_end_date),
        )
        response = await self._engine.retrieve_with_strategy(owner, query, strategy, options)
        if not response.ok:
            return _failure(response)

        events = []
        for item in response.fragments:
            if attendees and not self._has_attendee(item, attendees):
                continue
            if event_type and not self._is_event_type(item, event_type):
                continue
            events.append(_fragment_summary(item))
            if len(events) >= max_results:
                break

        return {
            "ok": True,
            "events": events,
            "found": bool(events),
            "result_count": len(events),
            "search_terms": query,
            "degraded": response.degraded,
        }

    @staticmethod
    def _has_attendee(item: RankedFragment, attendees: List[str]) -> bool:
        fragment = item.fragment
        listed = " ".join(str(a) for a in fragment.metadata.get("attendees", []))
        haystack = " ".join([
            fragment.text, listed, fragment.person_email or "", fragment.person_name or "",
        ]).lower()
        return any(a.lower() in haystack for a in attendees)

    @staticmethod
    def _is_event_type(item: RankedFragment, event_type: str) -> bool:
        declared = item.fragment.metadata.get("event_type")
        if declared:
            return str(declared).lower() == event_type
        return event_type in item.text.lower()

    async def find_mentions(
        self,
        owner: str,
        target: str,
        context: Optional[str] = None,
        time_range: Optional[str] = None,
        max_results: int = 10,
    ) -> Dict[str, Any]:
        """Who mentioned a person or topic, grouped by person"""
        query = f"who mentioned {target}"
        if context:
            query = f"{query} {context}"
        strategy = Strategy(kind=StrategyKind.PERSON_SEARCH, person=target)
        options = RetrievalOptions(max_results=max_results, mode=ResponseMode.CONTEXT, time_range=time_range)
        response = await self._engine.retrieve_with_strategy(owner, target, strategy, options)
        if not response.ok:
            return _failure(response)

        answer = self._engine.synthesizer.build_who_mentioned_answer(query, response.fragments)
        return {"ok": True, "target": target, **answer.to_dict()}

    async def when_search(
        self,
        owner: str,
        query: str,
        timeframe: str = "recent",
        max_results: int = 10,
    ) -> Dict[str, Any]:
        """Timeline of matching fragments within a timeframe"""
        if timeframe not in WHEN_TIMEFRAMES:
            return {"ok": False, "error": f"Unknown timeframe '{timeframe}'", "error_kind": "input"}

        strategy = Strategy(kind=StrategyKind.TEMPORAL_SEARCH, query=query)
        options = RetrievalOptions(max_results=max_results, mode=ResponseMode.CONTEXT, time_range=timeframe)
        response = await self._engine.retrieve_with_strategy(owner, query, strategy, options)
        if not response.ok:
            return _failure(response)

        answer = self._engine.synthesizer.build_temporal_answer(query, response.fragments)
        data = {"ok": True, "timeframe": timeframe, **answer.to_dict()}
        if response.strategy is not None and response.strategy.time_range is not None:
            data["time_range"] = response.strategy.time_range.to_dict()
        data["degraded"] = response.degraded
        return data

    def statistics(self, owner: str) -> Dict[str, Any]:
        return self._engine.statistics(owner)

    # ------------------------------------------------------------------ #
    # Write tools
    # ------------------------------------------------------------------ #

    def upsert_fragment(
        self,
        owner: str,
        source_type: str,
        source_id: str,
        text: str,
        person_email: Optional[str] = None,
        person_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store (or replace) a single-fragment record and try to embed it"""
        try:
            timestamp: Optional[datetime] = parse_date(created_at) if created_at else None
            ids = self._engine.store.upsert(
                owner,
                source_type,
                source_id,
                text,
                metadata=metadata,
                person_email=person_email,
                person_name=person_name,
                created_at=timestamp,
            )
        except RecallError as e:
            logger.warning("Upsert rejected: %s", e)
            return {"ok": False, "error": str(e), "error_kind": e.kind.value}

        embedded = False
        if self._embedding is not None and self._embedding.is_available:
            try:
                vector = self._embedding.embed_single(text)
                embedded = all(self._engine.store.attach_embedding(i, vector) for i in ids)
            except Exception as e:
                # The fragment stays keyword-searchable until a backfill embeds it
                logger.warning("Embedding on upsert failed: %s", e)

        return {"ok": True, "ids": ids, "embedded": embedded}

    def delete_source(self, owner: str, source_type: str, source_id: str) -> Dict[str, Any]:
        try:
            removed = self._engine.store.delete_source(owner, source_type, source_id)
        except RecallError as e:
            return {"ok": False, "error": str(e), "error_kind": e.kind.value}
        return {"ok": True, "deleted": removed}
