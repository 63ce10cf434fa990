"""
Search operations over the knowledge base.

Every operation first checks that the database is installed and an API
key is configured, and answers with a bracketed hint when it is not.
Falls back to the API-key hint when the embedding provider fails at
query time.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

from .config import Config
from .embeddings import PROVIDER_MARKER, EmbeddingError, from_config
from .store import KnowledgeDB, open_db, search_collections

logger = logging.getLogger(__name__)

SETUP_HINT = (
    "The plugin is not fully configured. "
    "Please run /musa-claude-plugin:setup to complete the initial setup."
)

VOYAGE_ERROR_HINT = (
    "The Voyage AI API key is not working (it may be expired, revoked, or mistyped). "
    "Please run /musa-claude-plugin:setup to diagnose the issue."
)

MISSING_DATABASE_HINT = f"[Knowledge base not found. {SETUP_HINT}]"
MISSING_CREDENTIALS_HINT = (
    "[Voyage API key not configured — no VOYAGE_API_KEY environment variable found. "
    f"{SETUP_HINT}]"
)


@dataclass(frozen=True)
class PreconditionResult:
    """Either ready (``ok``) or a failure reason with its user-facing hint."""

    ok: bool
    reason: Optional[str] = None  # "missing_database" | "missing_credentials"
    hint: Optional[str] = None


READY = PreconditionResult(ok=True)


def is_embedding_failure(exc: BaseException) -> bool:
    """True if *exc*, or anything in its cause chain, came from the embedding provider."""
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, EmbeddingError):
            return True
        current = current.__cause__ or current.__context__
    # Engines that re-raise with only the message text
    return PROVIDER_MARKER in str(exc)


class KnowledgeSearch:
    """Public search surface.

    Parameters
    ----------
    config:
        Resolved configuration; only ``DB_PATH`` and the API key are read.
    opener:
        ``opener(path, embedder) -> KnowledgeDB``; defaults to a read-only
        :func:`~knowledge_base.store.open_db`.
    embedder_factory:
        Builds the query-mode embedder from *config*.
    """

    def __init__(
        self,
        config: Config,
        *,
        opener: Callable[..., KnowledgeDB] = open_db,
        embedder_factory: Optional[Callable[[Config], object]] = None,
    ) -> None:
        self._config = config
        self._opener = opener
        self._embedder_factory = embedder_factory or (
            lambda cfg: from_config(cfg, input_type="query")
        )

    @property
    def db_path(self) -> str:
        return self._config.DB_PATH

    def db_available(self) -> bool:
        return os.path.exists(self.db_path)

    def check_preconditions(self) -> PreconditionResult:
        """Check that a search can run.  Database is checked before credentials."""
        if not self.db_available():
            return PreconditionResult(False, "missing_database", MISSING_DATABASE_HINT)
        if not self._config.api_key_configured():
            return PreconditionResult(False, "missing_credentials", MISSING_CREDENTIALS_HINT)
        return READY

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def semantic_search(self, query: str, kind: str = "all") -> str:
        return self._run(lambda db: search_collections(db, query, kind=kind, n_results=5))

    def api_lookup(self, module_name: str, method: str = "") -> str:
        query = f"{module_name} {method}".strip()
        return self._run(lambda db: search_collections(db, query, kind="api", n_results=5))

    def similar_works(self, description: str) -> str:
        def _query(db: KnowledgeDB) -> str:
            readme = search_collections(db, description, kind="demo_readme", n_results=3)
            code = search_collections(db, description, kind="demo_code", n_results=3)
            return f"## Demo Descriptions\n{readme}\n\n## Demo Code\n{code}"
        return self._run(_query)

    def dependency_chain(self, concept: str) -> str:
        def _query(db: KnowledgeDB) -> str:
            docs = search_collections(
                db, f"setup requirements for {concept}", kind="docs", n_results=3
            )
            code = search_collections(
                db, f"require include {concept}", kind="demo_code", n_results=2
            )
            return f"## Documentation\n{docs}\n\n## Code Examples\n{code}"
        return self._run(_query)

    def code_pattern(self, technique: str) -> str:
        def _query(db: KnowledgeDB) -> str:
            code = search_collections(db, technique, kind="demo_code", n_results=3)
            docs = search_collections(db, technique, kind="docs", n_results=2)
            return f"## Code Examples\n{code}\n\n## Related Documentation\n{docs}"
        return self._run(_query)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(self, query: Callable[[KnowledgeDB], str]) -> str:
        precondition = self.check_preconditions()
        if not precondition.ok:
            return precondition.hint
        return self._with_db(query)

    def _with_db(self, query: Callable[[KnowledgeDB], str]) -> str:
        """Open the DB, run *query*, always close; map provider failures to a hint."""
        db = self._opener(self.db_path, self._embedder_factory(self._config))
        try:
            return query(db)
        except Exception as exc:
            if is_embedding_failure(exc):
                logger.debug("[search] Embedding provider failure: %s", exc)
                return f"[{VOYAGE_ERROR_HINT}]"
            raise
        finally:
            db.close()
