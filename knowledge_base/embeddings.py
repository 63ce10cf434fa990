"""
Voyage AI embedding client.

Uses the voyage-code-3 model with asymmetric search:
  - input_type "document" when indexing
  - input_type "query" when searching

Texts are sent in batches of at most ``BATCH_SIZE``; the vectors come back
in the same order as the input regardless of how the API orders its reply.
"""

from __future__ import annotations

import logging
import random
import time
from typing import TYPE_CHECKING, Optional, Sequence

import requests

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

API_URL = "https://api.voyageai.com/v1/embeddings"
MODEL = "voyage-code-3"
DIMENSIONS = 1024
BATCH_SIZE = 50
MAX_RETRIES = 3
CONNECT_TIMEOUT = 10

PROVIDER = "voyage"
# Every EmbeddingError message starts with this, so callers that only
# see the text (e.g. through a wrapping engine) can still classify it.
PROVIDER_MARKER = "Voyage AI"

INPUT_TYPES = ("document", "query")


class EmbeddingError(RuntimeError):
    """Raised when the embedding provider rejects or fails a request."""

    provider = PROVIDER

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class VoyageEmbedder:
    """Batched client for the Voyage AI embeddings endpoint.

    Parameters
    ----------
    api_key:
        Bearer token for the API.
    input_type:
        ``"document"`` for indexing, ``"query"`` for searching.
    session:
        Optional ``requests.Session`` (injected by tests).
    timeout:
        Read timeout per batch, in seconds.
    batch_size:
        Maximum number of texts per request.
    max_retries:
        Attempts per batch for transient failures (429, 5xx, network).
    retry_delay:
        Base delay for the exponential back-off.
    """

    def __init__(
        self,
        api_key: str,
        input_type: str = "document",
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        batch_size: int = BATCH_SIZE,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = 1.0,
    ) -> None:
        if input_type not in INPUT_TYPES:
            raise ValueError(f"input_type must be one of {INPUT_TYPES}, got {input_type!r}")
        self.api_key = api_key
        self.input_type = input_type
        self.timeout = timeout
        self.batch_size = max(1, batch_size)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per text in input order.

        Raises
        ------
        EmbeddingError
            If any batch fails; no partial results are returned.
        """
        texts = list(texts)
        if not texts:
            return []

        all_embeddings: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            all_embeddings.extend(self._embed_batch(batch))

        logger.debug(
            "[embedder] Embedded %d texts (%s) in %d batch(es)",
            len(texts), self.input_type,
            (len(texts) + self.batch_size - 1) // self.batch_size,
        )
        return all_embeddings

    def embed_query(self, text: str) -> list[float]:
        """Embed a single text."""
        return self.embed([text])[0]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        body = {
            "input": batch,
            "model": MODEL,
            "input_type": self.input_type,
            "truncation": True,
        }
        data = self._post_json(body)

        if data.get("data") is not None:
            ordered = sorted(data["data"], key=lambda d: d["index"])
            if len(ordered) != len(batch):
                raise EmbeddingError(
                    f"{PROVIDER_MARKER} returned {len(ordered)} embeddings "
                    f"for {len(batch)} inputs"
                )
            return [d["embedding"] for d in ordered]

        error = data.get("detail") or data.get("error") or "Unknown error"
        raise EmbeddingError(f"{PROVIDER_MARKER} API error: {error}")

    def _post_json(self, body: dict) -> dict:
        """POST *body*, retrying transient failures with back-off."""
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._session.post(
                    API_URL,
                    headers=self._headers(),
                    json=body,
                    timeout=(CONNECT_TIMEOUT, self.timeout),
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt < self.max_retries:
                    self._backoff(attempt, exc)
                    continue
                raise EmbeddingError(
                    f"{PROVIDER_MARKER} request failed after {attempt} attempts: {exc}"
                ) from exc

            if response.ok:
                try:
                    payload = response.json()
                except ValueError as exc:
                    raise EmbeddingError(
                        f"{PROVIDER_MARKER} returned invalid JSON: {exc}",
                        status_code=response.status_code,
                    ) from exc
                return payload if isinstance(payload, dict) else {}

            if _is_transient(response.status_code) and attempt < self.max_retries:
                self._backoff(attempt, f"HTTP {response.status_code}")
                continue

            raise EmbeddingError(
                f"{PROVIDER_MARKER} HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return {}  # unreachable

    def _backoff(self, attempt: int, reason) -> None:
        wait = self.retry_delay * (2 ** (attempt - 1))
        wait += wait * 0.1 * random.random()
        logger.warning(
            "[embedder] Transient error (attempt %d/%d): %s, retrying in %.1fs",
            attempt, self.max_retries, reason, wait,
        )
        time.sleep(wait)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def document_embedder(api_key: str, **kwargs) -> VoyageEmbedder:
    return VoyageEmbedder(api_key, input_type="document", **kwargs)


def query_embedder(api_key: str, **kwargs) -> VoyageEmbedder:
    return VoyageEmbedder(api_key, input_type="query", **kwargs)


def from_config(config: "Config", input_type: str = "query") -> VoyageEmbedder:
    """Build an embedder using the credentials and limits in *config*."""
    return VoyageEmbedder(
        config.VOYAGE_API_KEY,
        input_type=input_type,
        timeout=config.EMBED_TIMEOUT,
        max_retries=config.EMBED_MAX_RETRIES,
    )
