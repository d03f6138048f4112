"""Tests for the searcher's vector, keyword, person and composite modes."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from conftest import NOW, E_MEETING, fixed_clock


@pytest.fixture
def searcher(sara_store):
    from recall.retriever.searcher import Searcher
    return Searcher(sara_store, clock=fixed_clock)


def _ids(candidates):
    return [c.fragment.source_id for c in candidates]


class TestScoringHelpers:
    def test_keyword_score_damped_by_length(self):
        from recall.retriever.searcher import keyword_score
        assert keyword_score("budget review today", ["budget", "review"]) == pytest.approx(0.03)
        assert keyword_score(" ".join(["budget"] * 200), ["budget", "plan"]) == pytest.approx(0.5)
        assert keyword_score("anything", []) == 0.0

    def test_person_score_levels(self, sara_store):
        from recall.retriever.searcher import person_score
        fragment = sara_store.query("u1", limit=1)[0].fragment
        assert person_score(fragment, "sara@acme.com") == 1.0
        assert person_score(fragment, "Sara Smith") == 0.9
        assert person_score(fragment, "Monday") == 0.7
        assert person_score(fragment, "Bob") == 0.3

    def test_merge_keeps_best(self, sara_store):
        from recall.retriever.searcher import Candidate, merge_candidates
        fragment = sara_store.query("u1", limit=1)[0].fragment
        merged = merge_candidates([
            [Candidate(fragment=fragment, similarity_score=0.3)],
            [Candidate(fragment=fragment, similarity_score=0.9)],
        ])
        assert len(merged) == 1
        assert merged[0].similarity_score == 0.9


class TestPrimitiveModes:
    @pytest.mark.asyncio
    async def test_vector_search(self, searcher):
        results = await searcher.vector_search("u1", E_MEETING)
        assert _ids(results) == ["evt-1", "msg-1", "crm-1"]
        assert results[0].similarity_score == pytest.approx(1.0)
        assert results[1].vector_score == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_keyword_search_requires_every_keyword(self, searcher):
        results = await searcher.keyword_search("u1", "sara reschedule")
        assert _ids(results) == ["msg-1"]
        assert results[0].match_type == "keyword"
        assert results[0].similarity_score == pytest.approx(0.06)

    @pytest.mark.asyncio
    async def test_keyword_search_without_keywords(self, searcher):
        assert await searcher.keyword_search("u1", "who is the") == []

    @pytest.mark.asyncio
    async def test_hybrid_adds_keyword_boost(self, searcher):
        results = await searcher.hybrid_search("u1", "reschedule", E_MEETING)
        assert _ids(results) == ["evt-1", "msg-1", "crm-1"]
        assert results[1].match_type == "hybrid"
        assert results[1].similarity_score == pytest.approx(0.6 + 0.06 * 0.2)

    @pytest.mark.asyncio
    async def test_hybrid_without_embedding_is_keyword_only(self, searcher):
        results = await searcher.hybrid_search("u1", "reschedule", None)
        assert _ids(results) == ["msg-1"]

    @pytest.mark.asyncio
    async def test_person_search(self, searcher):
        by_email = await searcher.person_search("u1", "sara@acme.com")
        assert _ids(by_email) == ["evt-1", "msg-1", "crm-1"]
        assert all(c.similarity_score == 1.0 for c in by_email)

        by_text = await searcher.person_search("u1", "Tuesday")
        assert _ids(by_text) == ["msg-1"]
        assert by_text[0].similarity_score == 0.7

        assert await searcher.person_search("u1", "  ") == []


class TestCompositeModes:
    @pytest.mark.asyncio
    async def test_temporal_search_is_bounded(self, searcher):
        from recall.common.time_ranges import named_range
        results = await searcher.temporal_search("u1", "meeting", E_MEETING, named_range("recent", NOW))
        assert _ids(results) == ["evt-1"]

    @pytest.mark.asyncio
    async def test_source_filtered_search(self, searcher):
        results = await searcher.source_filtered_search("u1", "sara", E_MEETING, ["message"])
        assert _ids(results) == ["msg-1"]

    @pytest.mark.asyncio
    async def test_who_mentioned_extracts_target(self, searcher):
        from recall.retriever.strategies import PatternKind
        results = await searcher.pattern_search("u1", PatternKind.WHO_MENTIONED, "who mentioned Tuesday?", None)
        assert _ids(results) == ["msg-1"]

    @pytest.mark.asyncio
    async def test_emails_about(self, searcher):
        from recall.retriever.strategies import PatternKind
        results = await searcher.pattern_search("u1", PatternKind.EMAILS_ABOUT, "emails about reschedule", None)
        assert _ids(results) == ["msg-1"]

    @pytest.mark.asyncio
    async def test_recent_activity(self, searcher):
        from recall.retriever.strategies import PatternKind
        results = await searcher.pattern_search("u1", PatternKind.RECENT_ACTIVITY, "sara", None, now=NOW)
        assert _ids(results) == ["evt-1"]

    @pytest.mark.asyncio
    async def test_scheduling_context_merges_per_participant(self, searcher):
        results = await searcher.scheduling_context("u1", ["Sara Smith"], "meet sara", None)
        assert sorted(_ids(results)) == ["crm-1", "evt-1", "msg-1"]

    @pytest.mark.asyncio
    async def test_scheduling_without_participants(self, searcher):
        results = await searcher.scheduling_context("u1", [], "meeting", E_MEETING)
        assert _ids(results) == ["evt-1", "msg-1"]


class TestRun:
    @pytest.mark.asyncio
    async def test_run_person_strategy(self, searcher):
        from recall.retriever.strategies import Strategy, StrategyKind
        results = await searcher.run(Strategy(kind=StrategyKind.PERSON_SEARCH, person="Sara Smith"), "u1")
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_caller_filters_are_anded(self, searcher):
        from recall.common.fragment_store import ScalarFilters
        from recall.retriever.strategies import Strategy, StrategyKind
        filters = ScalarFilters(start=NOW - timedelta(days=60))
        results = await searcher.run(
            Strategy(kind=StrategyKind.HYBRID_SEARCH, query="sara"), "u1",
            embedding=E_MEETING, filters=filters,
        )
        assert _ids(results) == ["evt-1", "msg-1"]

    @pytest.mark.asyncio
    async def test_cancelled_token_skips_store(self):
        from recall.common.cancellation import CancellationToken
        from recall.common.errors import RetrievalCancelled
        from recall.retriever.searcher import Searcher
        from recall.retriever.strategies import Strategy, StrategyKind

        store = Mock()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(RetrievalCancelled):
            await Searcher(store).run(
                Strategy(kind=StrategyKind.HYBRID_SEARCH, query="q"), "u1",
                embedding=E_MEETING, token=token,
            )
        store.query.assert_not_called()
