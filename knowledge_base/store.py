"""
SQLite-backed vector store for the knowledge base.

Each row is a chunk of documentation or demo code with its embedding
stored as a float32 blob.  Queries are embedded with a query-mode
:class:`~knowledge_base.embeddings.VoyageEmbedder` and ranked by cosine
similarity using numpy.

Storage: ``knowledge.db`` (path from :class:`~knowledge_base.config.Config`)
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

KINDS = ("api", "docs", "demo_code", "demo_readme")
ALL_KINDS = "all"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id   TEXT PRIMARY KEY,
    kind       TEXT NOT NULL,
    source     TEXT NOT NULL DEFAULT '',
    content    TEXT NOT NULL,
    embedding  BLOB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chunks_kind ON chunks(kind);
"""


class Embedder(Protocol):
    def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Chunk:
    """A piece of text to be indexed."""

    kind: str
    content: str
    source: str = ""
    chunk_id: str = ""

    def resolved_id(self) -> str:
        if self.chunk_id:
            return self.chunk_id
        key = f"{self.kind}:{self.source}:{self.content}"
        return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


@dataclass
class SearchHit:
    """A single ranked search result."""

    chunk_id: str
    kind: str
    source: str
    content: str
    score: float


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vec_to_bytes(vec: Sequence[float]) -> bytes:
    return np.asarray(vec, dtype=np.float32).tobytes()


def _cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Compute cosine similarity between *query* (1-D) and each row of *matrix*."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = 1.0
    return (matrix @ query) / (row_norms * query_norm)


# ---------------------------------------------------------------------------
# KnowledgeDB
# ---------------------------------------------------------------------------

class KnowledgeDB:
    """Handle on an open knowledge database.

    Parameters
    ----------
    conn:
        Open SQLite connection.
    embedder:
        Embedder used for queries (``search``) or documents (``add_chunks``).
    path:
        Database path, for logging.
    """

    def __init__(self, conn: sqlite3.Connection, embedder: Embedder, path: str = "") -> None:
        self._conn = conn
        self._embedder = embedder
        self.path = path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass
            self._conn = None

    def __enter__(self) -> "KnowledgeDB":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count(self, kind: Optional[str] = None) -> int:
        if kind and kind != ALL_KINDS:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE kind = ?", (kind,)
            ).fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
        return row[0] if row else 0

    def search(self, query: str, kind: str = ALL_KINDS, n_results: int = 5) -> list[SearchHit]:
        """Embed *query* and return the *n_results* closest chunks of *kind*.

        Embedding failures propagate to the caller unchanged.
        """
        if kind == ALL_KINDS:
            rows = self._conn.execute(
                "SELECT chunk_id, kind, source, content, embedding FROM chunks"
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT chunk_id, kind, source, content, embedding FROM chunks "
                "WHERE kind = ?",
                (kind,),
            ).fetchall()

        query_vec = np.asarray(self._embedder.embed([query])[0], dtype=np.float32)
        if not rows or n_results <= 0:
            return []

        matrix = np.stack([np.frombuffer(row[4], dtype=np.float32) for row in rows])
        scores = _cosine_similarity_batch(query_vec, matrix)

        if len(scores) <= n_results:
            top_indices = np.argsort(scores)[::-1]
        else:
            top_indices = np.argpartition(scores, -n_results)[-n_results:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]

        return [
            SearchHit(
                chunk_id=rows[idx][0],
                kind=rows[idx][1],
                source=rows[idx][2],
                content=rows[idx][3],
                score=float(scores[idx]),
            )
            for idx in top_indices
        ]

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Iterable[Chunk]) -> int:
        """Embed and upsert *chunks*.  Returns the number written."""
        chunks = list(chunks)
        if not chunks:
            return 0
        for chunk in chunks:
            if chunk.kind not in KINDS:
                raise ValueError(f"Unknown chunk kind {chunk.kind!r}; expected one of {KINDS}")

        vectors = self._embedder.embed([c.content for c in chunks])
        if len(vectors) != len(chunks):
            raise ValueError(
                f"Embedder returned {len(vectors)} vectors for {len(chunks)} chunks"
            )
        with self._conn:
            self._conn.executemany(
                "INSERT OR REPLACE INTO chunks (chunk_id, kind, source, content, embedding) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (c.resolved_id(), c.kind, c.source, c.content, _vec_to_bytes(v))
                    for c, v in zip(chunks, vectors)
                ],
            )
        logger.debug("[store] Upserted %d chunks into %s", len(chunks), self.path)
        return len(chunks)


# ---------------------------------------------------------------------------
# Opening and formatting
# ---------------------------------------------------------------------------

def open_db(path: str, embedder: Embedder, *, readonly: bool = True) -> KnowledgeDB:
    """Open the knowledge database at *path*.

    Read-only handles never create or modify the file; writable handles
    create the schema if it is missing.
    """
    if readonly:
        uri = "file:{}?mode=ro".format(os.path.abspath(path))
        conn = sqlite3.connect(uri, uri=True)
    else:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        conn = sqlite3.connect(path)
        conn.executescript(_CREATE_TABLE)
    return KnowledgeDB(conn, embedder, path=path)


def format_hits(hits: list[SearchHit]) -> str:
    """Render *hits* as a Markdown block."""
    if not hits:
        return "No results found."
    blocks = []
    for i, hit in enumerate(hits, 1):
        header = f"### {i}. [{hit.kind}] {hit.source or hit.chunk_id} (score: {hit.score:.3f})"
        blocks.append(f"{header}\n{hit.content.strip()}")
    return "\n\n".join(blocks)


def search_collections(
    db: KnowledgeDB, query: str, kind: str = ALL_KINDS, n_results: int = 5
) -> str:
    """Search *db* and return the formatted results."""
    return format_hits(db.search(query, kind=kind, n_results=n_results))
