"""
Answer Synthesizer

Template-based answer construction from packed, ranked fragments.
Every statement in an answer is lifted from a fragment and carries a
citation derived from its source type; nothing is generated.

Key principle: low-confidence fragments are never narrated.
- above threshold -> quoted with citation
- below threshold -> dropped
- nothing left    -> fixed no-results answer with search suggestions
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..common.schemas import SourceType
from ..common.time_ranges import ensure_utc, utc_now
from .query_processor import ProcessedQuery
from .ranker import RankedFragment

logger = logging.getLogger("recall.retriever.synthesizer")

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
SNIPPET_MAX_WORDS = 60
SNIPPET_HEAD_WORDS = 30


class AnswerStyle(str, Enum):
    """Presentation styles"""
    COMPREHENSIVE = "comprehensive"
    CONCISE = "concise"
    BULLET_POINTS = "bullet_points"
    CONVERSATIONAL = "conversational"


# Fragments considered per style (None = all)
STYLE_LIMITS = {
    AnswerStyle.COMPREHENSIVE: 10,
    AnswerStyle.CONCISE: 3,
    AnswerStyle.BULLET_POINTS: None,
    AnswerStyle.CONVERSATIONAL: 5,
}

# First match wins
THEMES = [
    ("Meetings & Scheduling", ("meeting", "schedule")),
    ("Work & Projects", ("project", "work")),
    ("Personal & Family", ("family", "personal")),
    ("Clients & Customers", ("client", "customer")),
]
DEFAULT_THEME = "General"

NO_RESULTS_TIPS = [
    "Try different keywords or rephrase your question",
    "Check if the information might be under a different name or topic",
    "Make sure the person or event you're asking about is in your connected accounts",
]

GENERIC_SEARCH_HINTS = [
    "Try searching for related terms or synonyms",
    "Check if you're looking for a person, company, or topic",
    "Verify the spelling of names or technical terms",
    "Consider broadening your search terms",
]

MAX_SEARCH_HINTS = 4


@dataclass
class SynthesizedAnswer:
    """Cited answer built from ranked fragments"""
    answer: str
    style: str
    confidence: float  # weighted mean of cited final scores
    sources: List[Dict[str, Any]] = field(default_factory=list)
    counters: Dict[str, int] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "answer": self.answer,
            "style": self.style,
            "sources": list(self.sources),
            "confidence": self.confidence,
        }
        data.update(self.counters)
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


def format_date(moment: datetime) -> str:
    return moment.strftime("%B %d, %Y")


def format_citation(item: RankedFragment) -> str:
    """Human-readable source label for a fragment"""
    fragment = item.fragment
    if fragment.source_type == SourceType.MESSAGE:
        person = fragment.person_name or fragment.person_email or "Unknown"
        return f"from {person} – {format_date(fragment.created_at)}"
    if fragment.source_type.is_crm:
        return "CRM record"
    if fragment.source_type == SourceType.CALENDAR_EVENT:
        return "Calendar Event"
    return f"Document – {format_date(fragment.created_at)}"


def extract_snippet(text: str) -> str:
    """Whole text if short, otherwise its first 30 words with an ellipsis"""
    words = text.split()
    if len(words) <= SNIPPET_MAX_WORDS:
        return text.strip()
    return " ".join(words[:SNIPPET_HEAD_WORDS]) + "..."


def determine_theme(text: str) -> str:
    lowered = text.lower()
    for theme, markers in THEMES:
        if any(marker in lowered for marker in markers):
            return theme
    return DEFAULT_THEME


def calculate_confidence(items: List[RankedFragment]) -> float:
    """Position-weighted mean of final scores; weight = max(1 - 0.1 * i, 0.1)"""
    if not items:
        return 0.0
    total = 0.0
    weights = 0.0
    for index, item in enumerate(items):
        weight = max(1.0 - index * 0.1, 0.1)
        total += item.final_score * weight
        weights += weight
    return round(total / weights, 4)


def source_entry(item: RankedFragment) -> Dict[str, Any]:
    fragment = item.fragment
    return {
        "id": fragment.id,
        "source_type": fragment.source_type.value,
        "source_id": fragment.source_id,
        "person": fragment.person_name or fragment.person_email,
        "date": fragment.created_at.isoformat(),
        "confidence": round(item.final_score, 4),
        "citation": format_citation(item),
    }


class AnswerSynthesizer:
    """
    Builds cited answers in one of four styles, plus specialised answers
    for who-mentioned, timeline, contact and scheduling questions.
    """

    def __init__(
        self,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        include_citations: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.confidence_threshold = confidence_threshold
        self.include_citations = include_citations
        self._clock = clock or utc_now

    def synthesize(
        self,
        query: str,
        fragments: List[RankedFragment],
        style: AnswerStyle = AnswerStyle.COMPREHENSIVE,
        confidence_threshold: Optional[float] = None,
        processed: Optional[ProcessedQuery] = None,
    ) -> SynthesizedAnswer:
        """
        Build an answer from packed fragments.

        Args:
            query: The user's original question
            fragments: Packed RankedFragments in rank order
            style: Presentation style
            confidence_threshold: Minimum final score to be narrated
            processed: Processed query, used for no-results suggestions

        Returns:
            SynthesizedAnswer (never raises for empty input)
        """
        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold
        style = AnswerStyle(style) if not isinstance(style, AnswerStyle) else style

        confident = [f for f in fragments if f.final_score >= threshold]
        if not confident:
            logger.debug("No fragment above %.2f for %r", threshold, query)
            return self.no_results_answer(query, processed)

        limit = STYLE_LIMITS[style]
        cited = confident[:limit] if limit else confident

        if style == AnswerStyle.CONCISE:
            answer, counters = self._concise(query, cited)
        elif style == AnswerStyle.BULLET_POINTS:
            answer, counters = self._bullets(query, cited)
        elif style == AnswerStyle.CONVERSATIONAL:
            answer, counters = self._conversational(query, cited)
        else:
            answer, counters = self._comprehensive(query, cited)

        warnings = []
        dropped = len(fragments) - len(confident)
        if dropped:
            warnings.append(f"{dropped} low-confidence result(s) omitted")

        return SynthesizedAnswer(
            answer=answer,
            style=style.value,
            confidence=calculate_confidence(cited),
            sources=[source_entry(f) for f in cited],
            counters=counters,
            warnings=warnings,
        )

    # ------------------------------------------------------------------ #
    # Styles
    # ------------------------------------------------------------------ #

    def _cite(self, item: RankedFragment) -> str:
        return f" *({format_citation(item)})*" if self.include_citations else ""

    def _concise(self, query: str, cited: List[RankedFragment]):
        top = cited[0]
        lowered = query.lower()
        snippet = extract_snippet(top.text)

        if re.search(r"\bwho\b", lowered) and top.fragment.has_person:
            person = top.fragment.person_name or top.fragment.person_email
            body = f"{person} was mentioned in relation to {snippet}"
        elif re.search(r"\bwhen\b", lowered):
            body = f"{snippet} This occurred around {format_date(top.created_at)}."
        elif re.search(r"\bwhat\b", lowered):
            body = f"regarding {query}, {snippet}"
        else:
            body = snippet

        answer = f"Based on your information, {body}{self._cite(top)}"
        return answer, {"key_points": len(cited)}

    def _comprehensive(self, query: str, cited: List[RankedFragment]):
        themes: "OrderedDict[str, List[RankedFragment]]" = OrderedDict()
        for item in cited:
            themes.setdefault(determine_theme(item.text), []).append(item)

        sections = []
        for theme, items in themes.items():
            lines = [f"• {extract_snippet(i.text)}{self._cite(i)}" for i in items]
            sections.append(f"**{theme}:**\n" + "\n".join(lines))

        answer = f"Here's what I found about **{query}**:\n\n" + "\n\n".join(sections)
        return answer, {"theme_count": len(themes), "total_sources": len(cited)}

    def _bullets(self, query: str, cited: List[RankedFragment]):
        bullets = [f"• {extract_snippet(i.text)}{self._cite(i)}" for i in cited]
        answer = f"Here's what I found about **{query}**:\n\n" + "\n".join(bullets)
        return answer, {"bullet_count": len(bullets)}

    def _conversational(self, query: str, cited: List[RankedFragment]):
        snippets = [extract_snippet(i.text) for i in cited]
        if len(cited) == 1:
            body = f"{snippets[0]} This came from {format_citation(cited[0])}."
        elif len(cited) <= 3:
            body = " Additionally, ".join(s.rstrip(".") for s in snippets) + "."
        else:
            top_two = " and ".join(s.rstrip(".") for s in snippets[:2])
            body = (
                "I found several relevant pieces of information. "
                f"The most relevant results mention {top_two}."
            )
        answer = f"I found some information about {query}. {body}"
        return answer, {"key_points": len(cited)}

    # ------------------------------------------------------------------ #
    # No results
    # ------------------------------------------------------------------ #

    def no_results_answer(self, query: str, processed: Optional[ProcessedQuery] = None) -> SynthesizedAnswer:
        """Fixed-format answer used whenever nothing is confident enough"""
        suggestions = self.search_suggestions(processed)
        tips = "\n".join(f"• {tip}" for tip in NO_RESULTS_TIPS)
        hints = "\n".join(f"• {hint}" for hint in suggestions)

        answer = (
            f"I couldn't find specific information about \"{query}\" in your emails, "
            "calendar, or contacts.\n\n"
            f"Here are some suggestions:\n{tips}\n\n{hints}"
        )
        return SynthesizedAnswer(
            answer=answer,
            style="no_results",
            confidence=0.0,
            sources=[],
            suggestions=suggestions,
        )

    @staticmethod
    def search_suggestions(processed: Optional[ProcessedQuery] = None) -> List[str]:
        """Query-specific hints first, padded with generic ones"""
        hints = []
        if processed is not None:
            for name in processed.entities.people[:2]:
                hints.append(f"Search for messages from {name}")
            for email in processed.entities.emails[:1]:
                hints.append(f"Look up {email} in your contacts")
            if processed.keywords:
                hints.append(f"Search for \"{' '.join(processed.keywords[:3])}\" on its own")
        for hint in GENERIC_SEARCH_HINTS:
            if len(hints) >= MAX_SEARCH_HINTS:
                break
            hints.append(hint)
        return hints[:MAX_SEARCH_HINTS]

    # ------------------------------------------------------------------ #
    # Specialised answers
    # ------------------------------------------------------------------ #

    def build_who_mentioned_answer(self, query: str, fragments: List[RankedFragment]) -> SynthesizedAnswer:
        """Group mentions by the person each fragment belongs to"""
        match = re.search(r"who mentioned\s+(.+?)\s*(?:[.?]|$)", query, re.IGNORECASE)
        target = match.group(1).strip().lower() if match else ""
        keywords = [
            w for w in re.findall(r"[a-z0-9]+", query.lower())
            if len(w) > 2 and w not in ("who", "mentioned", "what", "when", "where", "how")
        ]

        by_person: "OrderedDict[str, List[RankedFragment]]" = OrderedDict()
        for item in fragments:
            person = item.fragment.person_name or item.fragment.person_email or "Unknown"
            by_person.setdefault(person, []).append(item)

        sections = []
        cited = []
        for person, items in by_person.items():
            relevant = [
                i for i in items
                if (target and target in i.text.lower()) or any(k in i.text.lower() for k in keywords)
            ][:3]
            if not relevant:
                continue
            cited.extend(relevant)
            if len(relevant) == 1:
                body = f"{extract_snippet(relevant[0].text)}{self._cite(relevant[0])}"
            else:
                body = "\n".join(f"• {extract_snippet(i.text)}{self._cite(i)}" for i in relevant)
            sections.append(f"**{person}**:\n{body}")

        if sections:
            answer = "Based on the information I found:\n\n" + "\n\n".join(sections)
        else:
            answer = "I couldn't find any mentions related to your query."

        return SynthesizedAnswer(
            answer=answer,
            style="who_mentioned",
            confidence=calculate_confidence(cited),
            sources=[source_entry(i) for i in cited],
            counters={"total_mentions": len(cited)},
        )

    def build_temporal_answer(
        self,
        query: str,
        fragments: List[RankedFragment],
        now: Optional[datetime] = None,
    ) -> SynthesizedAnswer:
        """Timeline grouped by age relative to now"""
        now = ensure_utc(now or self._clock())
        periods: "OrderedDict[str, List[RankedFragment]]" = OrderedDict(
            (name, []) for name in ("This Week", "This Month", "Last 3 Months", "This Year", "Previous Years")
        )
        for item in sorted(fragments, key=lambda i: i.created_at, reverse=True):
            days = (now - item.created_at).days
            if days <= 7:
                periods["This Week"].append(item)
            elif days <= 30:
                periods["This Month"].append(item)
            elif days <= 90:
                periods["Last 3 Months"].append(item)
            elif days <= 365:
                periods["This Year"].append(item)
            else:
                periods["Previous Years"].append(item)

        sections = []
        for period, items in periods.items():
            if not items:
                continue
            lines = [
                f"• **{format_date(i.created_at)}**: {extract_snippet(i.text)}{self._cite(i)}"
                for i in items
            ]
            sections.append(f"**{period}:**\n" + "\n".join(lines))

        if sections:
            answer = f"Here's the timeline for **{query}**:\n\n" + "\n\n".join(sections)
        else:
            answer = f"I couldn't find temporal information about {query}."

        counters = {"total_events": len(fragments)}
        if fragments:
            dates = [i.created_at for i in fragments]
            counters["span_days"] = (max(dates) - min(dates)).days

        return SynthesizedAnswer(
            answer=answer,
            style="temporal",
            confidence=calculate_confidence(fragments),
            sources=[source_entry(i) for i in fragments],
            counters=counters,
        )

    def build_contact_answer(self, query: str, fragments: List[RankedFragment]) -> SynthesizedAnswer:
        """Per-person contact summary with relationship type"""
        by_person: "OrderedDict[str, List[RankedFragment]]" = OrderedDict()
        for item in fragments:
            person = item.fragment.person_name or item.fragment.person_email
            if person:
                by_person.setdefault(person, []).append(item)

        sections = []
        for person, items in by_person.items():
            types = []
            for i in items:
                contact_type = self._contact_type(i)
                if contact_type not in types:
                    types.append(contact_type)
            lines = [
                f"• {extract_snippet(i.text)} *({i.created_at.strftime('%B %d')}"
                + (f" - {format_citation(i)})*" if self.include_citations else ")*")
                for i in items[:3]
            ]
            sections.append(f"**{person}** ({', '.join(types)})\n" + "\n".join(lines))

        if sections:
            answer = f"Here's the contact information for **{query}**:\n\n" + "\n\n".join(sections)
        else:
            answer = f"I couldn't find contact information related to {query}."

        return SynthesizedAnswer(
            answer=answer,
            style="contact",
            confidence=calculate_confidence(fragments),
            sources=[source_entry(i) for i in fragments],
            counters={"contact_count": len(by_person)},
        )

    @staticmethod
    def _contact_type(item: RankedFragment) -> str:
        lowered = item.text.lower()
        if item.source_type.is_crm:
            return "CRM Contact"
        if "client" in lowered:
            return "Client"
        if "customer" in lowered:
            return "Customer"
        if "colleague" in lowered:
            return "Colleague"
        return "Contact"

    def build_scheduling_answer(self, query: str, fragments: List[RankedFragment]) -> SynthesizedAnswer:
        """Scheduling analysis: urgency, people, location needs, duration"""
        relevant = [
            i for i in fragments
            if i.source_type == SourceType.CALENDAR_EVENT
            or any(w in i.text.lower() for w in ("meeting", "schedule", "call"))
        ]

        urgency = "low"
        for i in relevant:
            lowered = i.text.lower()
            if "urgent" in lowered or "asap" in lowered:
                urgency = "high"
                break
            if "this week" in lowered:
                urgency = "medium"

        people = []
        for i in relevant:
            person = i.fragment.person_name or i.fragment.person_email
            if person and person not in people:
                people.append(person)

        location_markers = ("office", "home", "zoom", "meet", "call", "conference room")
        needs_location = any(m in i.text.lower() for i in relevant for m in location_markers)
        duration = 30

        parts = [{
            "high": "This appears to be time-sensitive. I recommend scheduling this as soon as possible.",
            "medium": "This should be scheduled within the next week.",
            "low": "This can be scheduled at your convenience.",
        }[urgency]]
        if people:
            parts.append(f"The people involved are: {', '.join(people)}.")
        if needs_location:
            parts.append("A specific location or meeting setup appears to be required.")
        else:
            parts.append("Location requirements appear to be flexible.")
        parts.append(f"I suggest a {duration}-minute meeting.")

        suggestions = [
            "Consider checking calendar availability for all involved parties",
            "Prepare an agenda if this is a formal meeting",
            "Send calendar invites as soon as possible" if urgency == "high"
            else "Send calendar invites at least 24 hours in advance",
        ]

        return SynthesizedAnswer(
            answer=f"Based on the context for **{query}**: " + " ".join(parts),
            style="scheduling",
            confidence=calculate_confidence(relevant),
            sources=[source_entry(i) for i in relevant],
            counters={"total_references": len(relevant), "suggested_duration": duration},
            suggestions=suggestions,
        )


def format_answer_for_display(answer: SynthesizedAnswer) -> str:
    """Format a synthesized answer for CLI/UI display"""
    lines = [answer.answer]

    if answer.sources:
        lines.append("")
        lines.append(f"**Confidence**: {answer.confidence:.0%}")
        lines.append("")
        lines.append("**Sources**:")
        for s in answer.sources[:5]:
            lines.append(f"  - [{s['id']}] {s['citation']}")

    if answer.warnings:
        lines.append("")
        lines.append("**Warnings**:")
        for w in answer.warnings:
            lines.append(f"  - {w}")

    return "\n".join(lines)
