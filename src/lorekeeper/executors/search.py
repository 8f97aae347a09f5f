"""In-memory hybrid search over campaign content.

Documents are split into sentence-aligned passages and embedded once on
insertion.  A query is scored against every passage of the campaign::

    combined = 0.7 * cosine(query, passage) + 0.3 * lexical(query, passage)

where *lexical* is the fraction of distinct query terms that occur in
the passage.  One result is returned per source row (its best passage),
ordered by combined score.

Suited to tests, notebooks and small campaigns; a production deployment
puts the same ``SearchBackend`` port in front of a database index.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import tiktoken

from lorekeeper.config import EnrichmentConfig
from lorekeeper.models.base import SearchResult
from lorekeeper.utils.chunking import split_passages
from lorekeeper.utils.embeddings import compute_embeddings, cosine_scores

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

VECTOR_WEIGHT = 0.7
LEXICAL_WEIGHT = 0.3

_TERM = re.compile(r"\w+")


def query_terms(text: str) -> set[str]:
    """Distinct case-folded word terms of *text*."""
    return {t.casefold() for t in _TERM.findall(text)}


def lexical_score(terms: set[str], passage_terms: set[str]) -> float:
    if not terms:
        return 0.0
    return len(terms & passage_terms) / len(terms)


@dataclass
class _IndexedPassage:
    source_table: str
    source_id: int
    source_name: str
    text: str
    terms: set[str]


class HybridSearchIndex:
    """Campaign-scoped hybrid lexical+semantic index.

    Args:
        client: Async OpenAI client used for embeddings.  ``None``
            leaves the index unavailable.
        embedding_model: Embedding model name.
        max_passage_tokens: Token budget per indexed passage.
        encoding: Tokenizer for passage splitting and embedding batches;
            defaults to ``cl100k_base`` and the model's own tokenizer.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None,
        embedding_model: str = "text-embedding-3-small",
        *,
        max_passage_tokens: int = 512,
        encoding: tiktoken.Encoding | None = None,
    ) -> None:
        self._client = client
        self._model = embedding_model
        self._max_passage_tokens = max_passage_tokens
        self._encoding = encoding
        self._passages: dict[int, list[_IndexedPassage]] = {}
        self._vectors: dict[int, np.ndarray] = {}

    @classmethod
    def from_config(
        cls,
        client: AsyncOpenAI | None,
        config: EnrichmentConfig,
        *,
        encoding: tiktoken.Encoding | None = None,
    ) -> HybridSearchIndex:
        """Index embedding with ``config.embedding_model``."""
        return cls(client, config.embedding_model, encoding=encoding)

    async def is_available(self) -> bool:
        return self._client is not None

    async def add_document(
        self,
        campaign_id: int,
        source_table: str,
        source_id: int,
        source_name: str,
        text: str,
    ) -> int:
        """Index *text* under ``(source_table, source_id)``.

        Re-adding the same source replaces its passages.  Returns the
        number of passages indexed.

        Raises:
            RuntimeError: if no embedding client is configured.
        """
        if self._client is None:
            raise RuntimeError("HybridSearchIndex has no embedding client")

        self._remove(campaign_id, source_table, source_id)
        passages = split_passages(
            text, max_tokens=self._max_passage_tokens, encoding=self._encoding,
        )
        if not passages:
            return 0

        vectors = await compute_embeddings(
            [p.text for p in passages], self._client, model=self._model, encoding=self._encoding,
        )
        indexed = [
            _IndexedPassage(
                source_table=source_table,
                source_id=source_id,
                source_name=source_name,
                text=p.text,
                terms=query_terms(p.text),
            )
            for p in passages
        ]

        self._passages.setdefault(campaign_id, []).extend(indexed)
        existing = self._vectors.get(campaign_id)
        self._vectors[campaign_id] = (
            vectors if existing is None or existing.size == 0
            else np.vstack([existing, vectors])
        )
        logger.debug(
            "Indexed %s/%d for campaign %d: %d passages.",
            source_table, source_id, campaign_id, len(indexed),
        )
        return len(indexed)

    async def search(
        self,
        campaign_id: int,
        query: str,
        limit: int,
    ) -> list[SearchResult]:
        passages = self._passages.get(campaign_id)
        if not passages or not query.strip() or limit <= 0 or self._client is None:
            return []

        query_vec = (
            await compute_embeddings(
                [query], self._client, model=self._model, encoding=self._encoding,
            )
        )[0]
        vector_scores = cosine_scores(query_vec, self._vectors[campaign_id])
        terms = query_terms(query)

        best: dict[tuple[str, int], SearchResult] = {}
        for passage, vscore in zip(passages, vector_scores):
            vscore = float(vscore)
            combined = (
                VECTOR_WEIGHT * vscore
                + LEXICAL_WEIGHT * lexical_score(terms, passage.terms)
            )
            key = (passage.source_table, passage.source_id)
            current = best.get(key)
            if current is None or combined > current.combined_score:
                best[key] = SearchResult(
                    source_table=passage.source_table,
                    source_id=passage.source_id,
                    source_name=passage.source_name,
                    chunk_content=passage.text,
                    vector_score=vscore,
                    combined_score=combined,
                )

        ranked = sorted(best.values(), key=lambda r: r.combined_score, reverse=True)
        return ranked[:limit]

    def _remove(self, campaign_id: int, source_table: str, source_id: int) -> None:
        passages = self._passages.get(campaign_id)
        if not passages:
            return
        keep = [
            i for i, p in enumerate(passages)
            if (p.source_table, p.source_id) != (source_table, source_id)
        ]
        if len(keep) == len(passages):
            return
        self._passages[campaign_id] = [passages[i] for i in keep]
        self._vectors[campaign_id] = self._vectors[campaign_id][keep]

    def __len__(self) -> int:
        return sum(len(p) for p in self._passages.values())
