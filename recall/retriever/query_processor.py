"""
Query Processor

Parses user queries to understand intent and extract entities.
Classification is keyword-driven and deterministic; entity extraction goes
through a pluggable EntityExtractor so a better recognizer can replace the
regex one without touching the pipeline.
"""

import re
from typing import List, Protocol
from dataclasses import dataclass, field
from enum import Enum


class QueryIntent(str, Enum):
    """Types of query intent"""
    PERSON = "person"  # "Who is Sara Smith?"
    TEMPORAL = "temporal"  # "When is my meeting?"
    LOCATION = "location"  # "Where is the offsite?"
    INFORMATION = "information"  # "What did the client say?"
    PROCEDURAL = "procedural"  # "How do I reset the account?"
    SCHEDULING = "scheduling"  # "Schedule a meeting with Bob"
    COMMUNICATION = "communication"  # "Email from the landlord"
    CRM = "crm"  # "Contact notes for Acme"
    GENERAL = "general"  # Catch-all


class QueryComplexity(str, Enum):
    """Word-count based complexity class"""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    VERY_COMPLEX = "very_complex"


@dataclass
class QueryEntities:
    """Entities pulled out of the raw query text"""
    people: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    dates: List[str] = field(default_factory=list)
    relative_days: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.people or self.emails or self.dates or self.relative_days)

    def to_dict(self) -> dict:
        return {
            "people": list(self.people),
            "emails": list(self.emails),
            "dates": list(self.dates),
            "relative_days": list(self.relative_days),
        }


@dataclass
class ProcessedQuery:
    """Parsed representation of a user query"""
    original: str
    normalized: str
    intent: QueryIntent
    entities: QueryEntities = field(default_factory=QueryEntities)
    time_references: List[str] = field(default_factory=list)
    complexity: QueryComplexity = QueryComplexity.SIMPLE
    keywords: List[str] = field(default_factory=list)

    @property
    def person_name(self) -> str:
        """First extracted person name, or empty string"""
        return self.entities.people[0] if self.entities.people else ""

    def to_dict(self) -> dict:
        return {
            "original": self.original,
            "normalized": self.normalized,
            "intent": self.intent.value,
            "entities": self.entities.to_dict(),
            "time_references": list(self.time_references),
            "complexity": self.complexity.value,
            "keywords": list(self.keywords),
        }


class EntityExtractor(Protocol):
    """Anything that can pull entities out of raw query text"""

    def extract(self, text: str) -> QueryEntities:
        ...


class RegexEntityExtractor:
    """
    Pattern-based entity extraction.

    Person names are two consecutive capitalized words. A pair that opens
    with a question word or command verb is skipped in favour of the next
    pair, so "Schedule Bob Jones" yields "Bob Jones".
    """

    PERSON_PATTERN = re.compile(r"(?=\b([A-Z][a-z]+\s+[A-Z][a-z]+)\b)")
    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
    DATE_PATTERNS = [
        re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
        re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
        re.compile(
            r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4}\b",
            re.IGNORECASE,
        ),
    ]
    RELATIVE_DAY_PATTERN = re.compile(
        r"\b(today|tomorrow|yesterday|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
        re.IGNORECASE,
    )

    # Capitalized words that start a query rather than a name
    LEADING_WORDS = {
        "Who", "What", "When", "Where", "Why", "How", "Is", "Are", "Did", "Does", "Can",
        "The", "Schedule", "Email", "Find", "Show", "Tell", "Meet", "Call", "Send",
    }

    def extract(self, text: str) -> QueryEntities:
        people = []
        taken_until = -1
        for match in self.PERSON_PATTERN.finditer(text):
            name = match.group(1)
            if match.start(1) < taken_until or name.split()[0] in self.LEADING_WORDS:
                continue
            if name not in people:
                people.append(name)
            taken_until = match.end(1)

        emails = _unique(m.group(0) for m in self.EMAIL_PATTERN.finditer(text))

        dates = []
        for pattern in self.DATE_PATTERNS:
            dates.extend(m.group(0) for m in pattern.finditer(text))

        relative_days = _unique(m.group(1).lower() for m in self.RELATIVE_DAY_PATTERN.finditer(text))

        return QueryEntities(
            people=people,
            emails=emails,
            dates=_unique(dates),
            relative_days=relative_days,
        )


def _unique(items) -> List[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


# Articles and prepositions dropped during normalization
STOP_WORDS = {"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}

# Broader list used when picking keyword-search tokens
KEYWORD_STOP_WORDS = STOP_WORDS | {
    "who", "what", "when", "where", "why", "how", "which", "is", "are", "was", "were",
    "did", "does", "do", "has", "have", "had", "can", "could", "would", "should",
    "will", "my", "me", "our", "your", "about", "from", "this", "that", "there",
    "any", "all", "some", "tell", "show", "find", "get", "last", "next",
    # routing words that rarely appear in the records themselves
    "email", "emails", "send", "sent", "contact", "contacts", "crm", "hubspot", "schedule",
}

MAX_KEYWORDS = 5


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """
    Significant tokens for keyword search.

    Lowercases, replaces non-alphanumerics with spaces, keeps words longer
    than two characters that are not stop-words, de-duplicated in order.
    """
    cleaned = re.sub(r"[^a-z0-9\s]", " ", (text or "").lower())
    words = [w for w in cleaned.split() if len(w) > 2 and w not in KEYWORD_STOP_WORDS]
    return _unique(words)[:limit]


class QueryProcessor:
    """
    Processes user queries for personal-data retrieval.

    Responsibilities:
    1. Normalize query text (case, whitespace, stop-words, typos)
    2. Classify intent
    3. Extract entities and time references
    4. Estimate complexity
    """

    # Whole-word corrections applied after lowercasing
    TYPO_CORRECTIONS = {
        "shedule": "schedule",
        "calender": "calendar",
        "emaill": "email",
        "contac": "contact",
        "meetting": "meeting",
        "adress": "address",
    }

    # Checked in order; first match wins
    INTENT_PATTERNS = [
        (QueryIntent.PERSON, [r"\bwho\b"]),
        (QueryIntent.TEMPORAL, [r"\bwhen\b"]),
        (QueryIntent.LOCATION, [r"\bwhere\b"]),
        (QueryIntent.INFORMATION, [r"\bwhat\b"]),
        (QueryIntent.PROCEDURAL, [r"\bhow\b"]),
        (QueryIntent.SCHEDULING, [r"\bschedul\w*", r"\bmeetings?\b"]),
        (QueryIntent.COMMUNICATION, [r"\bemails?\b", r"\bsend\b", r"\bsent\b"]),
        (QueryIntent.CRM, [r"\bcontacts?\b", r"\bcrm\b", r"\bhubspot\b"]),
    ]

    TIME_PATTERNS = [
        r"\b(today|tomorrow|yesterday)\b",
        r"\b(?:last|next|this) (?:week|month|year)\b",
        r"\b\d{1,2}\s*(?:am|pm)\b",
        r"\b(morning|afternoon|evening|night|noon|midnight)\b",
    ]

    def __init__(self, entity_extractor: EntityExtractor = None):
        self._extractor = entity_extractor or RegexEntityExtractor()
        self._intent_regexes = [
            (intent, [re.compile(p) for p in patterns])
            for intent, patterns in self.INTENT_PATTERNS
        ]
        self._time_regexes = [re.compile(p, re.IGNORECASE) for p in self.TIME_PATTERNS]

    @property
    def entity_extractor(self) -> EntityExtractor:
        return self._extractor

    def process(self, query: str) -> ProcessedQuery:
        """
        Parse a user query.

        Never raises; anything not recognized is left empty.

        Args:
            query: Raw user query

        Returns:
            ProcessedQuery with intent, entities and time references
        """
        original = (query or "").strip()
        normalized = self._normalize(original)
        intent = self._classify_intent(normalized)
        entities = self._extractor.extract(original)
        time_references = self._extract_time_references(original)

        return ProcessedQuery(
            original=original,
            normalized=normalized,
            intent=intent,
            entities=entities,
            time_references=time_references,
            complexity=self._complexity(original),
            keywords=extract_keywords(normalized),
        )

    def _normalize(self, text: str) -> str:
        words = text.lower().split()
        words = [w for w in words if w not in STOP_WORDS]
        corrected = []
        for word in words:
            core = word.strip("?!.,;:")
            if core in self.TYPO_CORRECTIONS:
                word = word.replace(core, self.TYPO_CORRECTIONS[core])
            corrected.append(word)
        return " ".join(corrected)

    def _classify_intent(self, normalized: str) -> QueryIntent:
        for intent, regexes in self._intent_regexes:
            if any(r.search(normalized) for r in regexes):
                return intent
        return QueryIntent.GENERAL

    def _extract_time_references(self, text: str) -> List[str]:
        found = []
        for regex in self._time_regexes:
            for match in regex.finditer(text):
                ref = match.group(0).lower()
                if ref not in found:
                    found.append(ref)
        return found

    @staticmethod
    def _complexity(text: str) -> QueryComplexity:
        count = len(text.split())
        if count <= 3:
            return QueryComplexity.SIMPLE
        if count <= 7:
            return QueryComplexity.MODERATE
        if count <= 15:
            return QueryComplexity.COMPLEX
        return QueryComplexity.VERY_COMPLEX
