from .cache import RecencyCache
from .engine import ContextEngine
from .indexer import EmbeddingIndexer
from .retrieval import HybridRetriever
from .store import MemoryStore
from .summarizer import RollingSummarizer, SummarizationPolicy
from .user_profiles import UserMemoryService

__all__ = [
    "ContextEngine",
    "EmbeddingIndexer",
    "HybridRetriever",
    "MemoryStore",
    "RecencyCache",
    "RollingSummarizer",
    "SummarizationPolicy",
    "UserMemoryService",
]
