"""
Context Packer

Greedy prefix packing of ranked fragments into a token budget.
"""

import math
from dataclasses import dataclass, field
from typing import List

from .ranker import RankedFragment

TOKENS_PER_WORD = 1.3
DEFAULT_CONTEXT_WINDOW = 4000


def estimate_tokens(text: str) -> int:
    """Word count times 1.3, halves rounded up"""
    return int(math.floor(len(text.split()) * TOKENS_PER_WORD + 0.5))


@dataclass
class PackedContext:
    """Fragments that fit the window, in rank order"""
    fragments: List[RankedFragment] = field(default_factory=list)
    total_tokens: int = 0
    context_window: int = DEFAULT_CONTEXT_WINDOW
    dropped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.fragments


class ContextPacker:
    """
    Packs ranked fragments until the next one would overflow the window.

    Packing stops at the first fragment that does not fit, even if a later
    smaller one would, so the result is always a prefix of the ranking.
    """

    def __init__(self, context_window: int = DEFAULT_CONTEXT_WINDOW):
        if context_window < 0:
            raise ValueError("context_window must be non-negative")
        self.context_window = context_window

    def pack(self, ranked: List[RankedFragment]) -> PackedContext:
        packed: List[RankedFragment] = []
        running = 0
        for item in ranked:
            tokens = estimate_tokens(item.text)
            if running + tokens > self.context_window:
                break
            packed.append(item)
            running += tokens

        return PackedContext(
            fragments=packed,
            total_tokens=running,
            context_window=self.context_window,
            dropped=len(ranked) - len(packed),
        )
