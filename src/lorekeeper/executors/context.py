"""Context builder — retrieval-augmented context for the enrichment pipeline.

Before any agent runs, the context builder gathers campaign content
related to the source text and the game-system schema, once per
pipeline run.  The result is shared read-only by every agent.

Retrieval strategy:
1. **Content-summary query**: the opening of the source text plus the
   names of known entities it mentions.
2. **Entity-name queries**: entity names batched into small groups so
   the number of search calls stays bounded however many entities the
   campaign holds.

Results from all queries are merged, deduplicated per source row, ranked
by combined score and trimmed to a token budget.  Neither search nor
schema loading is allowed to fail the run: problems are logged and the
corresponding part of the context is left empty.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from lorekeeper.config import EnrichmentConfig
from lorekeeper.models.base import Entity, SearchResult
from lorekeeper.ports import SchemaSource, SearchBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedContext:
    """Retrieved snippets plus optional schema text for a single run."""

    campaign_results: tuple[SearchResult, ...] = field(default_factory=tuple)
    schema_text: str = ""

    def is_empty(self) -> bool:
        return not self.campaign_results and not self.schema_text

    def campaign_section(self) -> str:
        """Format retrieved snippets as a prompt section."""
        if not self.campaign_results:
            return ""

        parts = [
            "## Campaign Context",
            "",
            "Related campaign content retrieved for reference:",
            "",
        ]
        for r in self.campaign_results:
            parts.append(f"### {r.source_name or r.source_table} ({r.source_table})")
            parts.append("")
            parts.append(r.chunk_content.strip())
            parts.append("")
        return "\n".join(parts)

    def schema_section(self) -> str:
        """Format the game-system schema as a prompt section."""
        if not self.schema_text:
            return ""
        return f"## Game System Schema\n\n```yaml\n{self.schema_text.strip()}\n```\n"


class ContextBuilder:
    """Assembles a ``RetrievedContext`` from search and schema sources.

    Args:
        search: Hybrid search capability.
        schemas: Game-system schema source.
        config: Retrieval tunables (batch size, limits, token budget).
    """

    def __init__(
        self,
        search: SearchBackend,
        schemas: SchemaSource,
        config: EnrichmentConfig | None = None,
    ) -> None:
        self._search = search
        self._schemas = schemas
        self._config = config or EnrichmentConfig()

    # ── Main entry point ────────────────────────────────────────────

    async def build_context(
        self,
        campaign_id: int,
        content: str,
        schema_code: str | None,
        entities: Sequence[Entity],
        *,
        cancel: asyncio.Event | None = None,
    ) -> RetrievedContext:
        """Retrieve campaign content and schema text relevant to *content*.

        Never raises for retrieval problems; a failed or cancelled search
        yields a partial or empty result list.
        """
        results: list[SearchResult] = []

        if await self._search_available():
            queries = build_search_queries(
                content,
                entities,
                summary_chars=self._config.content_summary_chars,
                batch_size=self._config.entity_batch_size,
            )
            for query in queries:
                if cancel is not None and cancel.is_set():
                    logger.info(
                        "Context build cancelled for campaign %d; "
                        "keeping %d results retrieved so far.",
                        campaign_id, len(results),
                    )
                    break
                results.extend(await self._run_query(campaign_id, query))

        trimmed = deduplicate_and_trim(
            results,
            max_tokens=self._config.max_context_tokens,
            tokens_per_char=self._config.tokens_per_char,
        )

        schema_text = self._load_schema(schema_code) if schema_code else ""

        logger.info(
            "Context for campaign %d: %d raw results -> %d kept, schema %s.",
            campaign_id, len(results), len(trimmed),
            "loaded" if schema_text else "absent",
        )
        return RetrievedContext(campaign_results=tuple(trimmed), schema_text=schema_text)

    # ── Search helpers ──────────────────────────────────────────────

    async def _search_available(self) -> bool:
        try:
            return await self._search.is_available()
        except Exception:
            logger.warning(
                "Search availability check failed; skipping retrieval.",
                exc_info=True,
            )
            return False

    async def _run_query(self, campaign_id: int, query: str) -> list[SearchResult]:
        try:
            return list(
                await self._search.search(
                    campaign_id, query, self._config.search_limit_per_query,
                )
            )
        except Exception as e:
            logger.warning(
                "Search failed for campaign %d (query %r): %s",
                campaign_id, query[: self._config.max_query_log_chars], e,
            )
            return []

    def _load_schema(self, code: str) -> str:
        try:
            return self._schemas.load_schema(code) or ""
        except Exception as e:
            logger.warning("Failed to load game system schema %r: %s", code, e)
            return ""


# =====================================================================
# Query derivation
# =====================================================================

def build_search_queries(
    content: str,
    entities: Sequence[Entity],
    *,
    summary_chars: int = 150,
    batch_size: int = 5,
) -> list[str]:
    """Derive the content-summary query followed by entity-name batch queries.

    Empty queries are never returned.
    """
    queries: list[str] = []
    summary = build_content_summary_query(content, entities, summary_chars=summary_chars)
    if summary:
        queries.append(summary)
    queries.extend(build_entity_name_queries(entities, batch_size=batch_size))
    return queries


def build_content_summary_query(
    content: str,
    entities: Iterable[Entity],
    *,
    summary_chars: int = 150,
) -> str:
    """Opening of *content* plus the names of entities it mentions."""
    if not content:
        return ""

    summary = content[:summary_chars].strip()
    mentioned = mentioned_entities(content, entities)
    if mentioned:
        names = ", ".join(e.name for e in mentioned)
        summary = f"{summary} {names}" if summary else names
    return summary


def build_entity_name_queries(
    entities: Iterable[Entity],
    *,
    batch_size: int = 5,
) -> list[str]:
    """One comma-joined query per batch of *batch_size* entity names."""
    names = [e.name for e in entities if e.name]
    return [
        ", ".join(names[i : i + batch_size])
        for i in range(0, len(names), batch_size)
    ]


def mentioned_entities(content: str, entities: Iterable[Entity]) -> list[Entity]:
    """Entities whose name occurs in *content*, case-insensitively, in input order."""
    haystack = content.casefold()
    return [e for e in entities if e.name and e.name.casefold() in haystack]


# =====================================================================
# Merge & trim
# =====================================================================

def estimate_tokens(text: str, tokens_per_char: float = 0.25) -> float:
    """Rough token estimate from the codepoint count."""
    return len(text) * tokens_per_char


def deduplicate_and_trim(
    results: Iterable[SearchResult],
    *,
    max_tokens: float = 4000,
    tokens_per_char: float = 0.25,
) -> list[SearchResult]:
    """Merge results from several queries into one ranked, budgeted list.

    - Duplicates share ``(source_table, source_id)``; the higher
      ``combined_score`` wins.
    - Output is sorted by ``combined_score`` descending.
    - Results are accepted greedily while the running token estimate
      stays within *max_tokens*; the first result is always kept, even
      when it alone exceeds the budget.
    """
    best: dict[tuple[str, int], SearchResult] = {}
    for r in results:
        existing = best.get(r.key)
        if existing is None or r.combined_score > existing.combined_score:
            best[r.key] = r

    ranked = sorted(best.values(), key=lambda r: r.combined_score, reverse=True)

    trimmed: list[SearchResult] = []
    total = 0.0
    for r in ranked:
        tokens = estimate_tokens(r.chunk_content, tokens_per_char)
        if trimmed and total + tokens > max_tokens:
            break
        trimmed.append(r)
        total += tokens
    return trimmed
