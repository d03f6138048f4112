"""
Recall

Retrieval-and-ranking engine over personal records (messages, calendar
events, CRM notes) indexed as embedded text fragments.

Pipeline:
- QueryProcessor classifies intent and extracts entities
- StrategyDispatcher picks a retrieval strategy per intent
- Searcher runs vector / keyword / scalar lookups against a FragmentStore
- RelevanceRanker scores, ContextPacker budgets, AnswerSynthesizer cites

Usage:
    from recall.common import load_config, InMemoryFragmentStore, EmbeddingService
    from recall.retriever import RetrievalEngine, RetrievalOptions
    from recall.tools import RecallTools
"""

__version__ = "0.1.0"
