"""
knowledge_base — locally cached, vector-searchable knowledge base.

Public API for library usage::

    from knowledge_base import Config, KnowledgeSearch, ensure_db

    cfg = Config.load()
    ensure_db(cfg)
    print(KnowledgeSearch(cfg).semantic_search("how do I schedule events?"))
"""

from .config import Config
from .embeddings import EmbeddingError, VoyageEmbedder, document_embedder, query_embedder
from .search import KnowledgeSearch, PreconditionResult
from .updater import DatabaseUpdater, UpdateOutcome, UpdateReport, ensure_db

__version__ = "1.0.0"

__all__ = [
    "Config",
    "DatabaseUpdater",
    "EmbeddingError",
    "KnowledgeSearch",
    "PreconditionResult",
    "UpdateOutcome",
    "UpdateReport",
    "VoyageEmbedder",
    "document_embedder",
    "ensure_db",
    "query_embedder",
]
