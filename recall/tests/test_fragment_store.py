"""Tests for the in-memory fragment store."""

from datetime import timedelta

import pytest

from conftest import NOW, E_MEETING, E_PROFILE


class TestUpsert:
    def test_reingest_is_idempotent(self, store):
        first = store.upsert("u1", "message", "m1", "Lunch on Friday?", created_at=NOW)
        second = store.upsert("u1", "message", "m1", "Lunch on Friday?", created_at=NOW)

        assert first == second
        assert len(store) == 1

    def test_reingest_replaces_text(self, store):
        ids = store.upsert("u1", "message", "m1", "old text", embedding=E_MEETING)
        store.upsert("u1", "message", "m1", "new text")

        fragment = store.get("u1", ids[0])
        assert fragment.text == "new text"
        # changed text invalidates the old vector
        assert fragment.embedding is None

    def test_reingest_same_text_keeps_embedding(self, store):
        ids = store.upsert("u1", "message", "m1", "same text", embedding=E_MEETING)
        store.upsert("u1", "message", "m1", "same text")
        assert store.get("u1", ids[0]).embedding == E_MEETING

    def test_replace_source_drops_extra_fragments(self, store):
        from recall.common.schemas import FragmentDraft
        ids = store.replace_source("u1", "document", "doc-1", [
            FragmentDraft(text="part one"),
            FragmentDraft(text="part two"),
        ])
        assert len(ids) == 2

        new_ids = store.replace_source("u1", "document", "doc-1", [FragmentDraft(text="only part")])
        assert new_ids == ids[:1]
        assert len(store) == 1

    def test_empty_text_raises_input_error(self, store):
        from recall.common.errors import InputError
        with pytest.raises(InputError):
            store.upsert("u1", "message", "m1", "   ")

    def test_unknown_source_type_raises_input_error(self, store):
        from recall.common.errors import InputError
        with pytest.raises(InputError):
            store.upsert("u1", "fax", "m1", "hello")

    def test_missing_owner_raises_input_error(self, store):
        from recall.common.errors import InputError
        with pytest.raises(InputError):
            store.upsert("", "message", "m1", "hello")

    def test_created_at_defaults_to_clock(self, store):
        ids = store.upsert("u1", "message", "m1", "hello")
        assert store.get("u1", ids[0]).created_at == NOW


class TestOwnerIsolation:
    def test_get_is_owner_scoped(self, sara_store):
        hit = sara_store.query("u1", limit=1)[0]
        assert sara_store.get("u2", hit.fragment.id) is None

    def test_query_never_returns_other_owner(self, sara_store):
        sara_store.upsert("u2", "message", "x", "Sara from another tenant", embedding=E_MEETING)

        hits = sara_store.query("u1", vector=E_MEETING, limit=50)
        assert all(h.fragment.owner == "u1" for h in hits)
        assert sara_store.query("u3") == []


class TestQuery:
    def test_vector_query_orders_by_distance(self, sara_store):
        hits = sara_store.query("u1", vector=E_MEETING)
        assert [h.fragment.source_id for h in hits] == ["evt-1", "msg-1", "crm-1"]
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].similarity == pytest.approx(0.6)

    def test_vector_query_skips_fragments_without_embedding(self, sara_store):
        sara_store.upsert("u1", "message", "plain", "no vector here")
        hits = sara_store.query("u1", vector=E_MEETING)
        assert "plain" not in [h.fragment.source_id for h in hits]

    def test_scalar_query_orders_by_recency(self, sara_store):
        hits = sara_store.query("u1")
        assert [h.fragment.source_id for h in hits] == ["evt-1", "msg-1", "crm-1"]
        assert hits[0].distance is None

    def test_filters(self, sara_store):
        from recall.common.fragment_store import ScalarFilters

        by_source = sara_store.query("u1", filters=ScalarFilters(source_types=["crm_note"]))
        assert [h.fragment.source_id for h in by_source] == ["crm-1"]

        by_window = sara_store.query("u1", filters=ScalarFilters(start=NOW - timedelta(days=7), end=NOW))
        assert [h.fragment.source_id for h in by_window] == ["evt-1"]

        by_text = sara_store.query("u1", filters=ScalarFilters(text_contains="RESCHEDULE"))
        assert [h.fragment.source_id for h in by_text] == ["msg-1"]

        by_email = sara_store.query("u1", filters=ScalarFilters(person_email="SARA@acme.com"))
        assert len(by_email) == 3

    def test_merged_filters_intersect(self):
        from recall.common.fragment_store import ScalarFilters
        a = ScalarFilters(source_types=["message", "crm_note"], start=NOW - timedelta(days=30))
        b = ScalarFilters(source_types=["message"], start=NOW - timedelta(days=7))
        merged = a.merged(b)
        assert merged.source_types == ["message"]
        assert merged.start == NOW - timedelta(days=7)

    def test_merged_filters_keep_both_text_needles(self, sara_store):
        from recall.common.fragment_store import ScalarFilters
        merged = ScalarFilters(person_like="Bob").merged(ScalarFilters(person_like="Sara Smith"))
        assert merged.person_like == ("Bob", "Sara Smith")
        assert sara_store.query("u1", filters=merged) == []

        both = ScalarFilters(text_contains="sara").merged(ScalarFilters(text_contains="tuesday"))
        assert [h.fragment.source_id for h in sara_store.query("u1", filters=both)] == ["msg-1"]

    def test_conflicting_emails_match_nothing(self, sara_store):
        from recall.common.fragment_store import ScalarFilters
        same = ScalarFilters(person_email="sara@acme.com").merged(ScalarFilters(person_email="SARA@acme.com"))
        assert len(sara_store.query("u1", filters=same)) == 3

        conflict = ScalarFilters(person_email="sara@acme.com").merged(ScalarFilters(person_email="bob@acme.com"))
        assert sara_store.query("u1", filters=conflict) == []

    def test_limit_is_clamped(self, store):
        for i in range(60):
            store.upsert("u1", "message", f"m{i}", f"message number {i}", created_at=NOW - timedelta(minutes=i))
        assert len(store.query("u1", limit=500)) == 50
        assert len(store.query("u1", limit=0)) == 1


class TestEmbeddings:
    def test_attach_embedding(self, store):
        ids = store.upsert("u1", "message", "m1", "hello")
        assert store.list_missing_embeddings("u1")[0].id == ids[0]

        assert store.attach_embedding(ids[0], E_PROFILE) is True
        assert store.list_missing_embeddings("u1") == []
        assert store.query("u1", vector=E_PROFILE)[0].fragment.id == ids[0]

    def test_attach_embedding_unknown_id(self, store):
        assert store.attach_embedding("frag_missing", E_PROFILE) is False

    def test_dimension_mismatch_is_skipped(self, sara_store):
        assert sara_store.query("u1", vector=[1.0, 0.0]) == []


class TestDeleteAndStatistics:
    def test_delete_source(self, sara_store):
        assert sara_store.delete_source("u1", "message", "msg-1") == 1
        assert sara_store.delete_source("u1", "message", "msg-1") == 0
        assert len(sara_store) == 2

    def test_statistics(self, sara_store):
        stats = sara_store.statistics("u1")
        assert stats["total_fragments"] == 3
        assert stats["by_source"] == {"calendar_event": 1, "crm_note": 1, "message": 1}
        assert stats["recent_fragments"] == 1
        assert stats["unique_people"] == 1
        assert stats["with_embedding"] == 3
        assert stats["last_updated"] == (NOW - timedelta(days=2)).isoformat()

    def test_statistics_for_unknown_owner(self, sara_store):
        stats = sara_store.statistics("nobody")
        assert stats["total_fragments"] == 0
        assert stats["last_updated"] is None


class TestFragmentModel:
    def test_properties(self, sara_store):
        fragment = sara_store.query("u1", limit=1)[0].fragment
        assert fragment.key == ("u1", "calendar_event", "evt-1")
        assert fragment.id.startswith("frag_")
        assert fragment.word_count == 8
        assert fragment.has_person
        assert fragment.source_type.is_crm is False

    def test_naive_created_at_is_utc(self):
        from datetime import datetime, timezone
        from recall.common.schemas import Fragment
        fragment = Fragment(owner="u1", source_type="message", source_id="m", text="hi",
                            created_at=datetime(2026, 1, 1))
        assert fragment.created_at.tzinfo == timezone.utc
