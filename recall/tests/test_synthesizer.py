"""Tests for answer synthesis, citations and confidence."""

from datetime import timedelta

import pytest

from conftest import NOW, fixed_clock


def _ranked(store, source_type, source_id, text, score, days_old=1, **kwargs):
    from recall.retriever.ranker import RankedFragment
    ids = store.upsert("u1", source_type, source_id, text, created_at=NOW - timedelta(days=days_old), **kwargs)
    return RankedFragment(
        fragment=store.get("u1", ids[0]),
        similarity_score=score,
        final_score=score,
    )


@pytest.fixture
def synthesizer():
    from recall.retriever.synthesizer import AnswerSynthesizer
    return AnswerSynthesizer(clock=fixed_clock)


class TestHelpers:
    def test_citations_by_source(self, store):
        from recall.retriever.synthesizer import format_citation
        message = _ranked(store, "message", "m", "hi", 1.0, days_old=0, person_name="Sara Smith")
        crm = _ranked(store, "crm_note", "c", "note", 1.0)
        event = _ranked(store, "calendar_event", "e", "standup", 1.0)
        doc = _ranked(store, "document", "d", "design notes", 1.0, days_old=0)

        assert format_citation(message) == "from Sara Smith – October 21, 2026"
        assert format_citation(crm) == "CRM record"
        assert format_citation(event) == "Calendar Event"
        assert format_citation(doc) == "Document – October 21, 2026"

    def test_message_citation_without_person(self, store):
        from recall.retriever.synthesizer import format_citation
        message = _ranked(store, "message", "m", "hi", 1.0, days_old=0)
        assert format_citation(message).startswith("from Unknown")

    def test_snippet(self):
        from recall.retriever.synthesizer import extract_snippet
        assert extract_snippet("short text ") == "short text"
        long_text = " ".join(f"w{i}" for i in range(61))
        snippet = extract_snippet(long_text)
        assert snippet.endswith("w29...")
        assert len(snippet.split()) == 30

    def test_confidence_is_weighted_mean(self, store):
        from recall.retriever.synthesizer import calculate_confidence
        items = [_ranked(store, "message", "a", "a", 1.0), _ranked(store, "message", "b", "b", 0.8)]
        assert calculate_confidence(items) == pytest.approx(1.72 / 1.9, abs=1e-4)
        assert calculate_confidence([]) == 0.0

    def test_themes(self):
        from recall.retriever.synthesizer import determine_theme
        assert determine_theme("Weekly meeting notes") == "Meetings & Scheduling"
        assert determine_theme("Customer escalation") == "Clients & Customers"
        assert determine_theme("Groceries") == "General"


class TestSynthesize:
    def test_comprehensive_groups_by_theme(self, store, synthesizer):
        items = [
            _ranked(store, "calendar_event", "e", "Meeting with Sara Smith on Monday at 2pm", 1.1),
            _ranked(store, "message", "m", "Project kickoff notes", 0.9, person_name="Bob"),
        ]
        answer = synthesizer.synthesize("Sara", items)

        assert answer.style == "comprehensive"
        assert "**Meetings & Scheduling:**" in answer.answer
        assert "**Work & Projects:**" in answer.answer
        assert "*(Calendar Event)*" in answer.answer
        assert answer.counters == {"theme_count": 2, "total_sources": 2}
        assert [s["source_id"] for s in answer.sources] == ["e", "m"]

    def test_low_confidence_fragments_are_dropped(self, store, synthesizer):
        items = [
            _ranked(store, "message", "hi", "Budget approved", 0.9),
            _ranked(store, "message", "lo", "Budget maybe", 0.5),
        ]
        answer = synthesizer.synthesize("budget", items, style="bullet_points")

        assert answer.counters == {"bullet_count": 1}
        assert "Budget maybe" not in answer.answer
        assert answer.warnings == ["1 low-confidence result(s) omitted"]

    def test_no_results(self, store, synthesizer):
        from recall.retriever.query_processor import QueryProcessor
        processed = QueryProcessor().process("Who is Jane Doe?")
        items = [_ranked(store, "message", "lo", "unrelated", 0.1)]

        answer = synthesizer.synthesize("Who is Jane Doe?", items, processed=processed)

        assert answer.style == "no_results"
        assert answer.confidence == 0.0
        assert answer.sources == []
        assert "couldn't find specific information" in answer.answer
        assert answer.suggestions[0] == "Search for messages from Jane Doe"
        assert len(answer.suggestions) == 4

    def test_concise_when_question(self, store, synthesizer):
        items = [_ranked(store, "calendar_event", "e", "Dentist appointment", 0.9, days_old=0)]
        answer = synthesizer.synthesize("when is the dentist", items, style="concise")
        assert answer.answer.startswith("Based on your information, Dentist appointment")
        assert "October 21, 2026" in answer.answer
        assert answer.counters == {"key_points": 1}

    def test_concise_limits_sources(self, store, synthesizer):
        items = [_ranked(store, "message", f"m{i}", f"note {i}", 0.9) for i in range(5)]
        answer = synthesizer.synthesize("notes", items, style="concise")
        assert len(answer.sources) == 3

    def test_conversational(self, store, synthesizer):
        items = [_ranked(store, "crm_note", "c", "Sara is VP Sales.", 0.9)]
        answer = synthesizer.synthesize("Sara", items, style="conversational")
        assert answer.answer == "I found some information about Sara. Sara is VP Sales. This came from CRM record."

    def test_threshold_override(self, store, synthesizer):
        items = [_ranked(store, "message", "m", "low but wanted", 0.3)]
        answer = synthesizer.synthesize("wanted", items, confidence_threshold=0.2)
        assert answer.style == "comprehensive"

    def test_citations_can_be_disabled(self, store):
        from recall.retriever.synthesizer import AnswerSynthesizer
        items = [_ranked(store, "calendar_event", "e", "Standup", 0.9)]
        answer = AnswerSynthesizer(include_citations=False).synthesize("standup", items)
        assert "Calendar Event" not in answer.answer
        assert answer.sources[0]["citation"] == "Calendar Event"


class TestSpecialisedAnswers:
    def test_who_mentioned_groups_by_person(self, store, synthesizer):
        items = [
            _ranked(store, "message", "a", "The budget is due Friday", 0.9, person_name="Ana"),
            _ranked(store, "message", "b", "Lunch?", 0.9, person_name="Ben"),
            _ranked(store, "message", "c", "Budget looks fine", 0.8, person_name="Ana"),
        ]
        answer = synthesizer.build_who_mentioned_answer("who mentioned the budget?", items)
        assert "**Ana**" in answer.answer
        assert "**Ben**" not in answer.answer
        assert answer.counters == {"total_mentions": 2}

    def test_temporal_timeline(self, store, synthesizer):
        items = [
            _ranked(store, "calendar_event", "new", "Offsite", 0.9, days_old=3),
            _ranked(store, "calendar_event", "old", "Kickoff", 0.9, days_old=400),
        ]
        answer = synthesizer.build_temporal_answer("offsite", items, now=NOW)
        assert answer.answer.index("**This Week:**") < answer.answer.index("**Previous Years:**")
        assert answer.counters == {"total_events": 2, "span_days": 397}

    def test_contact_answer(self, store, synthesizer):
        items = [
            _ranked(store, "crm_contact", "c", "Sara Smith - VP Sales", 0.9, person_name="Sara Smith"),
            _ranked(store, "message", "m", "Our client Sara", 0.9, person_name="Sara Smith"),
        ]
        answer = synthesizer.build_contact_answer("Sara", items)
        assert "**Sara Smith** (CRM Contact, Client)" in answer.answer
        assert answer.counters == {"contact_count": 1}

    def test_scheduling_answer(self, store, synthesizer):
        items = [
            _ranked(store, "message", "m", "Urgent: need a call with Bob", 0.9, person_name="Bob Jones"),
            _ranked(store, "document", "d", "Quarterly report", 0.9),
        ]
        answer = synthesizer.build_scheduling_answer("Bob", items)
        assert "time-sensitive" in answer.answer
        assert "Bob Jones" in answer.answer
        assert answer.counters == {"total_references": 1, "suggested_duration": 30}
        assert answer.suggestions[-1] == "Send calendar invites as soon as possible"

    def test_display_format(self, store, synthesizer):
        from recall.retriever.synthesizer import format_answer_for_display
        items = [_ranked(store, "calendar_event", "e", "Standup", 0.9)]
        text = format_answer_for_display(synthesizer.synthesize("standup", items))
        assert "**Confidence**: 90%" in text
        assert "Calendar Event" in text
