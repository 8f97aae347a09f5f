from __future__ import annotations

import numpy as np
import pytest
from fakes import FakeEmbeddingsClient, byte_encoding

from lorekeeper.utils.embeddings import batch_by_tokens, compute_embeddings, cosine_scores


def test_batch_by_tokens_respects_limit() -> None:
    batches = batch_by_tokens(["aaaa", "bbbb", "cc", "dddddddddd"], byte_encoding(), 8)

    assert batches == [["aaaa", "bbbb"], ["cc"], ["dddddddddd"]]


async def test_compute_embeddings_keeps_order_across_batches() -> None:
    client = FakeEmbeddingsClient()

    vectors = await compute_embeddings(
        ["dragon", "ship ship", "kael"],
        client,
        max_tokens_per_batch=9,
        encoding=byte_encoding(),
    )

    assert vectors.shape == (3, 6)
    assert vectors.dtype == np.float32
    assert client.calls == [["dragon"], ["ship ship"], ["kael"]]
    assert vectors[1][2] == 2.0


async def test_compute_embeddings_empty_input_skips_api() -> None:
    client = FakeEmbeddingsClient()

    vectors = await compute_embeddings([], client)

    assert vectors.shape == (0, 0)
    assert client.calls == []


def test_cosine_scores() -> None:
    matrix = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]], dtype=np.float32)

    scores = cosine_scores(np.array([1.0, 0.0], dtype=np.float32), matrix)

    assert scores == pytest.approx([1.0, 0.0, 2 ** -0.5], abs=1e-6)
    assert cosine_scores(np.array([1.0]), np.empty((0, 0))).size == 0
