"""Sentence-aware text chunking for the search index.

Campaign content is split into passages of roughly *max_tokens* tokens
without cutting mid-sentence.  Consecutive passages repeat a few
trailing sentences so that a fact straddling a boundary is retrievable
from either side.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import tiktoken


# ── Constants ───────────────────────────────────────────────────────
_DEFAULT_ENCODING = "cl100k_base"
_SENTENCE_END = re.compile(r"(?<=[.!?。！？])\s+")


@dataclass(frozen=True)
class Passage:
    """A contiguous span of a source text."""

    index: int
    text: str
    start_char: int  # inclusive codepoint offset
    end_char: int  # exclusive
    token_count: int = 0


def split_passages(
    text: str,
    *,
    max_tokens: int = 512,
    overlap_tokens: int = 64,
    encoding: tiktoken.Encoding | None = None,
) -> list[Passage]:
    """Split *text* into overlapping, sentence-aligned passages.

    A single sentence longer than *max_tokens* is cut at whitespace.
    Blank input yields no passages.  *encoding* defaults to ``cl100k_base``.
    """
    if not text.strip():
        return []

    enc = encoding if encoding is not None else tiktoken.get_encoding(_DEFAULT_ENCODING)

    sentences: list[str] = []
    for s in split_sentences(text):
        sentences.extend(_cut_long_sentence(s, max_tokens, enc))
    costs = [len(enc.encode(s)) for s in sentences]

    # Offsets of each sentence in the original text.
    starts = [0]
    for s in sentences:
        starts.append(starts[-1] + len(s))

    passages: list[Passage] = []
    first = 0
    while first < len(sentences):
        last = first
        used = costs[first]
        while last + 1 < len(sentences) and used + costs[last + 1] <= max_tokens:
            last += 1
            used += costs[last]

        body = "".join(sentences[first : last + 1])
        passages.append(
            Passage(
                index=len(passages),
                text=body,
                start_char=starts[first],
                end_char=starts[last + 1],
                token_count=used,
            )
        )
        if last + 1 >= len(sentences):
            break

        # Step back over trailing sentences worth ~overlap_tokens.
        next_first = last + 1
        carried = 0
        while next_first - 1 > first and carried < overlap_tokens:
            next_first -= 1
            carried += costs[next_first]
        first = next_first

    return passages


def split_sentences(text: str) -> list[str]:
    """Split after sentence-ending punctuation, keeping the whitespace.

    ``"".join(split_sentences(text)) == text`` always holds.
    """
    parts: list[str] = []
    last = 0
    for m in _SENTENCE_END.finditer(text):
        parts.append(text[last : m.end()])
        last = m.end()
    if last < len(text):
        parts.append(text[last:])
    return parts


def _cut_long_sentence(
    sentence: str,
    max_tokens: int,
    enc: tiktoken.Encoding,
) -> list[str]:
    tokens = enc.encode(sentence)
    if len(tokens) <= max_tokens:
        return [sentence]

    pieces: list[str] = []
    pos = 0
    while pos < len(sentence):
        rest = enc.encode(sentence[pos:])
        if len(rest) <= max_tokens:
            pieces.append(sentence[pos:])
            break
        cut = pos + len(enc.decode(rest[:max_tokens]))
        space = sentence.rfind(" ", pos, cut)
        if space > pos:
            cut = space + 1
        cut = max(cut, pos + 1)
        pieces.append(sentence[pos:cut])
        pos = cut
    return pieces
