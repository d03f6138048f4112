"""
Fragment Schema

A fragment is one retrievable unit of text derived from a source record.
The text payload is the only thing the answer layer ever quotes; the
embedding is generated from it by an external collaborator and attached
later, so a fragment without one is normal and must still be findable by
keyword and scalar lookups.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum
import uuid


# ============================================================================
# Enums
# ============================================================================

class SourceType(str, Enum):
    """Origin of a fragment"""
    MESSAGE = "message"
    CALENDAR_EVENT = "calendar_event"
    CRM_CONTACT = "crm_contact"
    CRM_NOTE = "crm_note"
    DOCUMENT = "document"

    @property
    def is_crm(self) -> bool:
        return self.value.startswith("crm")


# ============================================================================
# Models
# ============================================================================

class FragmentDraft(BaseModel):
    """Chunked text awaiting storage, as produced by the ingestion side"""
    text: str = Field(..., description="Fragment text, non-empty")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    person_email: Optional[str] = None
    person_name: Optional[str] = None
    embedding: Optional[List[float]] = None
    created_at: Optional[datetime] = None

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("fragment text must not be empty")
        return value


class Fragment(BaseModel):
    """A stored, owner-scoped fragment"""
    id: str = Field(default_factory=lambda: generate_fragment_id())
    owner: str = Field(..., min_length=1, description="Tenant the fragment belongs to")
    source_type: SourceType
    source_id: str = Field(..., min_length=1, description="Identifier of the original record")
    text: str
    embedding: Optional[List[float]] = None
    person_email: Optional[str] = None
    person_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("fragment text must not be empty")
        return value

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def key(self) -> tuple:
        """Upsert key"""
        return (self.owner, self.source_type.value, self.source_id)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    @property
    def has_person(self) -> bool:
        return bool(self.person_email or self.person_name)

    @property
    def word_count(self) -> int:
        return len(self.text.split())


def generate_fragment_id() -> str:
    """Generate a unique fragment id"""
    return f"frag_{uuid.uuid4().hex[:16]}"
