"""Port definitions for the capabilities the pipeline consumes.

Everything behind these protocols is owned elsewhere: the text
generation service, hybrid search, game-system schema files and the
campaign database.  The pipeline reads through them and never writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from lorekeeper.models.base import Entity, Relationship, SearchResult


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """Parameters for one completion call."""

    system_prompt: str
    user_prompt: str
    max_tokens: int
    temperature: float


@dataclass(frozen=True, slots=True)
class CompletionResponse:
    """Text returned by a completion call."""

    content: str
    tokens_used: int = 0


@runtime_checkable
class CompletionProvider(Protocol):
    """Accepts a system+user prompt and a budget; returns text or raises."""

    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...


@runtime_checkable
class SearchBackend(Protocol):
    """Hybrid lexical+semantic search over vectorised campaign content."""

    async def is_available(self) -> bool: ...

    async def search(
        self,
        campaign_id: int,
        query: str,
        limit: int,
    ) -> list[SearchResult]: ...


@runtime_checkable
class SchemaSource(Protocol):
    """Game-system attribute schema text by code; ``""`` on any failure."""

    def load_schema(self, code: str) -> str: ...


@runtime_checkable
class EntityStore(Protocol):
    """Read-only access to campaign entities and their relationships."""

    async def list_entities(self, campaign_id: int) -> list[Entity]: ...

    async def get_relationships(self, entity_id: int) -> list[Relationship]: ...
