"""
Error taxonomy shared by the store, the retriever and the tool adapters.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Category reported on a failed retrieval response"""
    INPUT = "input"
    STORE = "store"
    CANCELLED = "cancelled"


class RecallError(Exception):
    """Base class for recoverable, request-scoped failures"""
    kind: ErrorKind = ErrorKind.INPUT


class InputError(RecallError):
    """Malformed dates, unsupported filter combinations, invalid fragments"""
    kind = ErrorKind.INPUT


class StoreError(RecallError):
    """The fragment store could not serve the request"""
    kind = ErrorKind.STORE


class RetrievalCancelled(RecallError):
    """The caller cancelled the request or its deadline passed"""
    kind = ErrorKind.CANCELLED
