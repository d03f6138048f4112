"""
Recall Common Module

Shared infrastructure for the retriever and the tool server.
"""

from .config import RecallConfig, RetrievalConfig, load_config
from .embedding_service import EmbeddingService, get_embedding_service
from .errors import ErrorKind, InputError, RecallError, RetrievalCancelled, StoreError
from .fragment_store import FragmentStore, InMemoryFragmentStore, ScalarFilters, StoreHit
from .cancellation import CancellationToken

__all__ = [
    "RecallConfig",
    "RetrievalConfig",
    "load_config",
    "EmbeddingService",
    "get_embedding_service",
    "ErrorKind",
    "InputError",
    "RecallError",
    "RetrievalCancelled",
    "StoreError",
    "FragmentStore",
    "InMemoryFragmentStore",
    "ScalarFilters",
    "StoreHit",
    "CancellationToken",
]
