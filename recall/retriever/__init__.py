"""
Retriever - Personal Context Retrieval

Finds the fragments most relevant to a question and builds a cited answer.

Key Components:
- QueryProcessor: Normalizes queries, classifies intent, extracts entities
- StrategyDispatcher: Maps intent to a retrieval strategy
- Searcher: Vector / keyword / scalar lookups against the FragmentStore
- RelevanceRanker: Similarity plus intent, recency and entity bonuses
- ContextPacker: Greedy prefix packing into a token budget
- AnswerSynthesizer: Template answers with per-source citations

Pipeline:
1. Process query
2. Dispatch strategy
3. Search (keyword fallback when no embedding)
4. Rank, cap and pack
5. Synthesize (answer mode) or return fragments (context mode)
"""

from .query_processor import QueryProcessor, ProcessedQuery, QueryIntent
from .strategies import StrategyDispatcher, Strategy, StrategyKind
from .searcher import Searcher, Candidate
from .ranker import RelevanceRanker, RankedFragment
from .packer import ContextPacker, PackedContext
from .synthesizer import AnswerSynthesizer, AnswerStyle, SynthesizedAnswer
from .engine import RetrievalEngine, RetrievalOptions, RetrievalResponse, ResponseMode

__all__ = [
    "QueryProcessor",
    "ProcessedQuery",
    "QueryIntent",
    "StrategyDispatcher",
    "Strategy",
    "StrategyKind",
    "Searcher",
    "Candidate",
    "RelevanceRanker",
    "RankedFragment",
    "ContextPacker",
    "PackedContext",
    "AnswerSynthesizer",
    "AnswerStyle",
    "SynthesizedAnswer",
    "RetrievalEngine",
    "RetrievalOptions",
    "RetrievalResponse",
    "ResponseMode",
]
