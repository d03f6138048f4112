"""
Cancellation Token

Carried through a retrieval request and checked before every external call
(embedding, store query). Once tripped, no further external calls are made.
"""

import time
from typing import Optional

from .errors import RetrievalCancelled


class CancellationToken:
    """Explicit cancel flag plus an optional monotonic deadline"""

    def __init__(self, timeout: Optional[float] = None):
        self._cancelled = False
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is none"""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            suffix = f" before {stage}" if stage else ""
            raise RetrievalCancelled(f"Retrieval cancelled{suffix}")
