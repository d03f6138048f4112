"""
Recall Schemas

Typed records stored by the fragment store.
"""

from .fragment import Fragment, FragmentDraft, SourceType, generate_fragment_id

__all__ = [
    "Fragment",
    "FragmentDraft",
    "SourceType",
    "generate_fragment_id",
]
