"""Enrichment configuration — single entry point for pipeline tunables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum


class NewEntityType(str, Enum):
    """Closed set of entity types accepted from new-entity detection."""

    NPC = "npc"
    LOCATION = "location"
    ITEM = "item"
    FACTION = "faction"
    CLUE = "clue"
    CREATURE = "creature"
    ORGANIZATION = "organization"
    EVENT = "event"
    DOCUMENT = "document"
    OTHER = "other"

    @classmethod
    def coerce(cls, raw: str | None) -> NewEntityType:
        """Map a model-supplied type string onto the closed set.

        Unknown or empty values fall into ``OTHER``.
        """
        value = (raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass
class EnrichmentConfig:
    """Tunables for retrieval, prompting, and the completion budgets.

    Attributes:
        extraction_model: Chat model used by the OpenAI provider.
        embedding_model: Embedding model used by the hybrid search index.
        enrichment_max_tokens: Output budget for enrichment and
            new-entity detection calls.
        enrichment_temperature: Sampling temperature for the same calls.
        revision_max_tokens: Output budget for the revision call, which
            returns the full rewritten text.
        revision_temperature: Sampling temperature for the revision call.
        max_content_chars: Codepoint budget for source content in prompts.
        max_context_tokens: Soft budget for retrieved snippets per run.
        tokens_per_char: Token estimate factor used against that budget.
        content_summary_chars: Codepoints taken from the start of the
            content for the content-summary search query.
        entity_batch_size: Entity names grouped into one search query.
        search_limit_per_query: Results requested per search query.
        max_query_log_chars: Query excerpt length written to logs.
        schemas_dir: Directory holding ``<code>.yaml`` game-system schemas.
    """

    # Models
    extraction_model: str = "gpt-4o"
    embedding_model: str = "text-embedding-3-small"

    # Completion budgets
    enrichment_max_tokens: int = 2048
    enrichment_temperature: float = 0.3
    revision_max_tokens: int = 8192
    revision_temperature: float = 0.4

    # Prompt sizing
    max_content_chars: int = 4000

    # Retrieval
    max_context_tokens: int = 4000
    tokens_per_char: float = 0.25
    content_summary_chars: int = 150
    entity_batch_size: int = 5
    search_limit_per_query: int = 10
    max_query_log_chars: int = 200

    # Game-system schemas
    schemas_dir: str = "schemas"


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger for command-line entry points.

    Library modules only create loggers; handlers are installed here so
    embedding applications keep control of their own logging setup.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
