"""Embedding utilities — batched async embedding and cosine scoring."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import tiktoken
from sklearn.metrics.pairwise import cosine_similarity

if TYPE_CHECKING:
    from openai import AsyncOpenAI


# ── Constants ───────────────────────────────────────────────────────
_DEFAULT_MODEL = "text-embedding-3-small"
_FALLBACK_ENCODING = "cl100k_base"
_MAX_TOKENS_PER_BATCH = 8_192


def _encoding_for(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding(_FALLBACK_ENCODING)


def batch_by_tokens(
    texts: list[str],
    encoding: tiktoken.Encoding,
    max_tokens_per_batch: int = _MAX_TOKENS_PER_BATCH,
) -> list[list[str]]:
    """Group *texts* into batches under the per-request token limit.

    A text larger than the limit on its own forms a single-item batch.
    """
    batches: list[list[str]] = []
    current: list[str] = []
    current_tokens = 0
    for text in texts:
        n_tokens = len(encoding.encode(text))
        if current and current_tokens + n_tokens > max_tokens_per_batch:
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(text)
        current_tokens += n_tokens
    if current:
        batches.append(current)
    return batches


async def compute_embeddings(
    texts: list[str],
    client: AsyncOpenAI,
    model: str = _DEFAULT_MODEL,
    max_tokens_per_batch: int = _MAX_TOKENS_PER_BATCH,
    *,
    encoding: tiktoken.Encoding | None = None,
) -> np.ndarray:
    """Embed *texts* and return an ``(N, D)`` float32 array.

    Rows are in input order.  An empty input returns an empty
    ``(0, 0)`` array without calling the API.  *encoding* defaults to
    the model's tokenizer and is only used for batching.
    """
    if not texts:
        return np.empty((0, 0), dtype=np.float32)

    if encoding is None:
        encoding = _encoding_for(model)
    vectors: list[list[float]] = []
    for batch in batch_by_tokens(texts, encoding, max_tokens_per_batch):
        response = await client.embeddings.create(input=batch, model=model)
        vectors.extend(item.embedding for item in response.data)
    return np.array(vectors, dtype=np.float32)


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query vector against each row of *matrix*."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    return cosine_similarity(query.reshape(1, -1), matrix)[0]
