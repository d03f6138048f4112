"""
Fragment Store

Owner-scoped storage of text fragments with optional embeddings.

The contract (FragmentStore) is what the retriever depends on; any backend
with a vector-distance operator and scalar filters can implement it.
InMemoryFragmentStore is the reference implementation: cosine distance via
numpy, copy-on-write snapshots so readers never wait on writers, and owner
isolation enforced by predicate on every read.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from pydantic import ValidationError

from .embedding_service import batch_cosine_similarity
from .errors import InputError
from .schemas.fragment import Fragment, FragmentDraft, SourceType, generate_fragment_id
from .time_ranges import ensure_utc, utc_now

logger = logging.getLogger("recall.store")

DEFAULT_QUERY_LIMIT = 15
MAX_QUERY_LIMIT = 50


def coerce_source_type(value) -> SourceType:
    """Accept a SourceType or its string value"""
    if isinstance(value, SourceType):
        return value
    try:
        return SourceType(str(value))
    except ValueError:
        valid = ", ".join(s.value for s in SourceType)
        raise InputError(f"Unknown source type '{value}' (expected one of: {valid})")


Needles = Union[str, Tuple[str, ...], None]


def _needles(value: Needles) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(v for v in value if v)


def _joined(a: Needles, b: Needles) -> Optional[Tuple[str, ...]]:
    combined = _needles(a) + _needles(b)
    return combined or None


@dataclass
class ScalarFilters:
    """
    Non-vector predicates for a store query. Unset fields do not filter.

    ``person_email``, ``text_contains`` and ``person_like`` take a single
    value or a tuple of values; every value must match. Two different
    emails therefore match nothing.
    """
    source_types: Optional[List[str]] = None
    person_email: Needles = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    ids: Optional[Set[str]] = None
    text_contains: Needles = None
    person_like: Needles = None
    require_embedding: bool = False

    def merged(self, other: Optional["ScalarFilters"]) -> "ScalarFilters":
        """Conjunction of two filter sets"""
        if other is None:
            return self

        source_types = self.source_types
        if self.source_types is not None and other.source_types is not None:
            source_types = [s for s in self.source_types if s in other.source_types]
        elif other.source_types is not None:
            source_types = list(other.source_types)

        ids = self.ids
        if self.ids is not None and other.ids is not None:
            ids = self.ids & other.ids
        elif other.ids is not None:
            ids = set(other.ids)

        start = max(filter(None, [self.start, other.start]), default=None)
        end = min(filter(None, [self.end, other.end]), default=None)

        return ScalarFilters(
            source_types=source_types,
            person_email=_joined(self.person_email, other.person_email),
            start=start,
            end=end,
            ids=ids,
            text_contains=_joined(self.text_contains, other.text_contains),
            person_like=_joined(self.person_like, other.person_like),
            require_embedding=self.require_embedding or other.require_embedding,
        )

    def matches(self, fragment: Fragment) -> bool:
        if self.source_types is not None and fragment.source_type.value not in self.source_types:
            return False
        email = (fragment.person_email or "").lower()
        if any(email != e.lower() for e in _needles(self.person_email)):
            return False
        if self.start is not None and fragment.created_at < ensure_utc(self.start):
            return False
        if self.end is not None and fragment.created_at > ensure_utc(self.end):
            return False
        if self.ids is not None and fragment.id not in self.ids:
            return False
        text = fragment.text.lower()
        if any(t.lower() not in text for t in _needles(self.text_contains)):
            return False
        haystacks = [(h or "").lower() for h in (fragment.person_email, fragment.person_name, fragment.text)]
        for needle in _needles(self.person_like):
            if not any(needle.lower() in h for h in haystacks):
                return False
        if self.require_embedding and not fragment.has_embedding:
            return False
        return True


@dataclass
class StoreHit:
    """A fragment returned by a store query, with its vector distance if any"""
    fragment: Fragment
    distance: Optional[float] = None

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance if self.distance is not None else 0.0


class FragmentStore(ABC):
    """
    Storage contract for fragments.

    Implementations must never return fragments of another owner and must
    treat (owner, source_type, source_id) as the upsert key:
    re-ingesting a record replaces what was stored for it.
    Backend failures are raised as StoreError.
    """

    @abstractmethod
    def replace_source(
        self,
        owner: str,
        source_type,
        source_id: str,
        drafts: List[FragmentDraft],
    ) -> List[str]:
        """Replace every fragment of a source record; returns stored ids"""

    @abstractmethod
    def delete_source(self, owner: str, source_type, source_id: str) -> int:
        """Delete every fragment of a source record; returns count removed"""

    @abstractmethod
    def attach_embedding(self, fragment_id: str, embedding: List[float]) -> bool:
        """Attach or replace the embedding of a stored fragment"""

    @abstractmethod
    def get(self, owner: str, fragment_id: str) -> Optional[Fragment]:
        """Fetch one fragment, scoped to owner"""

    @abstractmethod
    def query(
        self,
        owner: str,
        vector: Optional[List[float]] = None,
        filters: Optional[ScalarFilters] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[StoreHit]:
        """
        Query fragments of one owner.

        With a vector, only embedded fragments are considered and hits are
        ordered by ascending cosine distance. Without one, hits are ordered
        by recency.
        """

    @abstractmethod
    def statistics(self, owner: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts per owner: total, by source, recent, unique people"""

    @abstractmethod
    def list_missing_embeddings(self, owner: Optional[str] = None, limit: int = 100) -> List[Fragment]:
        """Fragments still waiting for an embedding"""

    def upsert(
        self,
        owner: str,
        source_type,
        source_id: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        person_email: Optional[str] = None,
        person_name: Optional[str] = None,
        embedding: Optional[List[float]] = None,
        created_at: Optional[datetime] = None,
    ) -> List[str]:
        """
        Store a single-fragment source record, replacing any prior version.

        Raises:
            InputError: Empty text or unknown source type
        """
        try:
            draft = FragmentDraft(
                text=text,
                metadata=metadata or {},
                person_email=person_email,
                person_name=person_name,
                embedding=embedding,
                created_at=created_at,
            )
        except ValidationError as e:
            raise InputError(f"Invalid fragment: {e.errors()[0].get('msg', e)}") from e
        return self.replace_source(owner, source_type, source_id, [draft])


def _clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_QUERY_LIMIT
    return max(1, min(int(limit), MAX_QUERY_LIMIT))


def _recency_key(fragment: Fragment):
    return (-fragment.created_at.timestamp(), fragment.id)


class InMemoryFragmentStore(FragmentStore):
    """
    Reference in-process store.

    Writers serialize on a lock and publish a fresh mapping; readers take the
    current mapping without locking, so a long query never blocks another
    owner's reads or an ingest.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._write_lock = threading.Lock()
        self._fragments: Dict[str, Fragment] = {}
        self._by_key: Dict[tuple, List[str]] = {}

    def __len__(self) -> int:
        return len(self._fragments)

    def _snapshot(self) -> Iterable[Fragment]:
        return self._fragments.values()

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def replace_source(
        self,
        owner: str,
        source_type,
        source_id: str,
        drafts: List[FragmentDraft],
    ) -> List[str]:
        if not owner:
            raise InputError("owner is required")
        if not source_id:
            raise InputError("source_id is required")
        if not drafts:
            raise InputError("At least one fragment draft is required")

        source = coerce_source_type(source_type)
        key = (owner, source.value, str(source_id))

        with self._write_lock:
            fragments = dict(self._fragments)
            by_key = dict(self._by_key)
            previous_ids = by_key.get(key, [])
            previous = [fragments[i] for i in previous_ids if i in fragments]

            stored: List[Fragment] = []
            for index, draft in enumerate(drafts):
                prior = previous[index] if index < len(previous) else None
                embedding = draft.embedding
                if embedding is None and prior is not None and prior.text == draft.text:
                    embedding = prior.embedding
                try:
                    fragment = Fragment(
                        id=prior.id if prior else generate_fragment_id(),
                        owner=owner,
                        source_type=source,
                        source_id=str(source_id),
                        text=draft.text,
                        embedding=embedding,
                        person_email=draft.person_email,
                        person_name=draft.person_name,
                        metadata=dict(draft.metadata),
                        created_at=draft.created_at or self._clock(),
                    )
                except ValidationError as e:
                    raise InputError(f"Invalid fragment: {e.errors()[0].get('msg', e)}") from e
                stored.append(fragment)

            for fragment_id in previous_ids:
                fragments.pop(fragment_id, None)
            for fragment in stored:
                fragments[fragment.id] = fragment
            by_key[key] = [f.id for f in stored]

            self._fragments = fragments
            self._by_key = by_key

        logger.debug("Stored %d fragment(s) for %s/%s", len(stored), source.value, source_id)
        return [f.id for f in stored]

    def delete_source(self, owner: str, source_type, source_id: str) -> int:
        source = coerce_source_type(source_type)
        key = (owner, source.value, str(source_id))

        with self._write_lock:
            if key not in self._by_key:
                return 0
            fragments = dict(self._fragments)
            by_key = dict(self._by_key)
            removed = 0
            for fragment_id in by_key.pop(key):
                if fragments.pop(fragment_id, None) is not None:
                    removed += 1
            self._fragments = fragments
            self._by_key = by_key

        logger.debug("Deleted %d fragment(s) for %s/%s", removed, source.value, source_id)
        return removed

    def attach_embedding(self, fragment_id: str, embedding: List[float]) -> bool:
        if not embedding:
            raise InputError("Embedding must be a non-empty vector")

        with self._write_lock:
            current = self._fragments.get(fragment_id)
            if current is None:
                return False
            fragments = dict(self._fragments)
            fragments[fragment_id] = current.model_copy(update={"embedding": [float(v) for v in embedding]})
            self._fragments = fragments
        return True

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, owner: str, fragment_id: str) -> Optional[Fragment]:
        fragment = self._fragments.get(fragment_id)
        if fragment is None or fragment.owner != owner:
            return None
        return fragment

    def query(
        self,
        owner: str,
        vector: Optional[List[float]] = None,
        filters: Optional[ScalarFilters] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[StoreHit]:
        limit = _clamp_limit(limit)
        filters = filters or ScalarFilters()
        if vector is not None:
            filters = replace(filters, require_embedding=True)

        candidates = [
            f for f in self._snapshot()
            if f.owner == owner and filters.matches(f)
        ]

        if vector is None:
            candidates.sort(key=_recency_key)
            return [StoreHit(fragment=f) for f in candidates[:limit]]

        dim = len(vector)
        comparable = [f for f in candidates if len(f.embedding) == dim]
        if len(comparable) < len(candidates):
            logger.warning(
                "Skipped %d fragment(s) with embedding dimension != %d",
                len(candidates) - len(comparable), dim,
            )
        if not comparable:
            return []

        similarities = batch_cosine_similarity(vector, [f.embedding for f in comparable])
        hits = [
            StoreHit(fragment=f, distance=1.0 - sim)
            for f, sim in zip(comparable, similarities)
        ]
        hits.sort(key=lambda h: (h.distance,) + _recency_key(h.fragment))
        return hits[:limit]

    def statistics(self, owner: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = ensure_utc(now or self._clock())
        owned = [f for f in self._snapshot() if f.owner == owner]
        recent_cutoff = now - timedelta(days=7)

        by_source = Counter(f.source_type.value for f in owned)
        people = {f.person_email.lower() for f in owned if f.person_email}
        last_updated = max((f.created_at for f in owned), default=None)

        return {
            "total_fragments": len(owned),
            "by_source": dict(sorted(by_source.items())),
            "recent_fragments": sum(1 for f in owned if f.created_at >= recent_cutoff),
            "unique_people": len(people),
            "with_embedding": sum(1 for f in owned if f.has_embedding),
            "last_updated": last_updated.isoformat() if last_updated else None,
        }

    def list_missing_embeddings(self, owner: Optional[str] = None, limit: int = 100) -> List[Fragment]:
        missing = [
            f for f in self._snapshot()
            if not f.has_embedding and (owner is None or f.owner == owner)
        ]
        missing.sort(key=lambda f: (f.created_at, f.id))
        return missing[:limit]
