"""Core data models for campaign entities, retrieval hits, and suggestions.

These models serve a dual purpose:
1. **LLM response schema** — the parser validates model output against
   the suggestion payloads below.  Payloads that cross the LLM boundary
   use camelCase aliases so ``model_dump(by_alias=True)`` reproduces the
   exact shape the prompts ask for.
2. **Internal data representation** — entities, relationships and
   search results are read from the persistence layer and carried
   through the pipeline unchanged.

Suggestion payloads form a closed set keyed by ``DetectionType``
(see ``lorekeeper.models.triage``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# =====================================================================
# Campaign records (owned by the persistence layer)
# =====================================================================

class Entity(BaseModel):
    """A named campaign object (NPC, location, item, faction, ...)."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Persistent entity identifier.")
    name: str = Field(..., description="Display name as used in campaign prose.")
    entity_type: str = Field(default="other", description="Entity type code.")
    description: str | None = Field(default=None, description="Current description.")


class Relationship(BaseModel):
    """A directed, typed edge between two entities."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    source_entity_id: int
    target_entity_id: int
    relationship_type: str
    description: str | None = None
    source_entity_name: str | None = None
    target_entity_name: str | None = None

    def pair(self) -> tuple[int, int]:
        """Endpoints as an unordered pair (smaller id first)."""
        return _unordered(self.source_entity_id, self.target_entity_id)


class SearchResult(BaseModel):
    """A ranked content snippet returned by hybrid search."""

    model_config = ConfigDict(frozen=True)

    source_table: str
    source_id: int
    source_name: str = ""
    chunk_content: str = ""
    vector_score: float = 0.0
    combined_score: float = 0.0

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_table, self.source_id)


# =====================================================================
# Suggestion payloads
# =====================================================================

class _Payload(BaseModel):
    """Shared behaviour for payloads decoded from model output.

    ``null`` values are dropped before validation so the field defaults
    apply: models frequently emit ``"rationale": null`` and such records
    are still usable.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class DescriptionUpdate(_Payload):
    """A proposed rewrite of an entity description."""

    current_description: str = ""
    suggested_description: str = ""
    rationale: str = ""


class LogEntry(_Payload):
    """A chronological event to append to an entity's history log."""

    content: str
    occurred_at: str | None = None


class RelationshipSuggestion(_Payload):
    """A proposed edge between the enriched entity and another entity."""

    source_entity_id: int
    source_entity_name: str = ""
    target_entity_id: int
    target_entity_name: str = ""
    relationship_type: str
    description: str = ""

    def pair(self) -> tuple[int, int]:
        return _unordered(self.source_entity_id, self.target_entity_id)


class NewEntitySuggestion(_Payload):
    """A named entity found in content but absent from the campaign.

    The detection prompt uses snake_case keys, so aliases are disabled.
    The name travels as the triage item's matched text and is left out
    of the dumped payload.
    """

    model_config = ConfigDict(alias_generator=None, frozen=True)

    name: str = Field(default="", exclude=True)
    entity_type: str = ""
    description: str = ""
    reasoning: str = ""


# =====================================================================
# Parsed responses
# =====================================================================

class EnrichmentResponse(BaseModel):
    """Structured output of a single enrichment call.

    List fields are always lists, never ``None``.
    """

    description_updates: list[DescriptionUpdate] = Field(default_factory=list)
    log_entries: list[LogEntry] = Field(default_factory=list)
    relationships: list[RelationshipSuggestion] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.description_updates or self.log_entries or self.relationships)


class NewEntityResponse(BaseModel):
    """Structured output of a new-entity detection call."""

    new_entities: list[NewEntitySuggestion] = Field(default_factory=list)


class RevisionResult(BaseModel):
    """Rewritten content plus a short summary of what changed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    revised_content: str = ""
    summary: str = ""


def _unordered(a: int, b: int) -> tuple[int, int]:
    return (a, b) if a <= b else (b, a)
