"""Entity enrichment — one completion per entity, parsed into triage items.

For each entity mentioned in a piece of campaign content the model is
asked for description updates, log entries and relationship proposals.
A second, campaign-wide call looks for named entities the campaign does
not know about yet.

Malformed model output degrades to "no suggestions"; a failed
completion raises ``CompletionError`` and is isolated per entity by
``EnrichmentAgent``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from lorekeeper.agents.parser import parse_enrichment_response, parse_new_entity_response
from lorekeeper.agents.prompts import (
    build_new_entity_system_prompt,
    build_new_entity_user_prompt,
    build_system_prompt,
    build_user_prompt,
)
from lorekeeper.config import EnrichmentConfig, NewEntityType
from lorekeeper.errors import CompletionError, ConfigurationError, LorekeeperError
from lorekeeper.executors.context import mentioned_entities
from lorekeeper.models.base import (
    EnrichmentResponse,
    Entity,
    NewEntitySuggestion,
    Relationship,
)
from lorekeeper.models.triage import ContentAnalysisItem, DetectionType, Phase
from lorekeeper.ports import CompletionProvider, CompletionRequest, EntityStore

if TYPE_CHECKING:
    from lorekeeper.executors.context import RetrievedContext
    from lorekeeper.models.ontology import Vocabulary
    from lorekeeper.workflow.pipeline import PipelineInput

logger = logging.getLogger(__name__)


async def _complete(
    provider: CompletionProvider,
    system_prompt: str,
    user_prompt: str,
    config: EnrichmentConfig,
) -> str:
    request = CompletionRequest(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        max_tokens=config.enrichment_max_tokens,
        temperature=config.enrichment_temperature,
    )
    try:
        response = await provider.complete(request)
    except CompletionError:
        raise
    except Exception as e:
        raise CompletionError(f"completion failed: {e}") from e
    return response.content


# =====================================================================
# Single-entity enrichment
# =====================================================================

async def enrich_entity(
    provider: CompletionProvider,
    entity: Entity,
    content: str,
    *,
    job_id: int = 0,
    other_entities: Sequence[Entity] = (),
    relationships: Sequence[Relationship] = (),
    context: RetrievedContext | None = None,
    vocabulary: Vocabulary | None = None,
    config: EnrichmentConfig | None = None,
) -> list[ContentAnalysisItem]:
    """Ask the model for enrichment suggestions about *entity*.

    Args:
        provider: Completion capability.
        entity: The entity to enrich.
        content: Source text the entity appears in.
        job_id: Analysis job the items belong to.
        other_entities: Other entities mentioned in the same content.
        relationships: The entity's known relationships.  Suggestions
            between an already-related pair are dropped.
        context: Retrieved campaign snippets and schema text.
        vocabulary: Controlled vocabulary for the system prompt.
        config: Budgets and prompt sizing.

    Returns:
        Pending enrichment-phase items, all tagged with the entity id.

    Raises:
        ConfigurationError: if the entity has no id or name, or the
            content is empty.
        CompletionError: if the completion call fails.
    """
    if entity.id == 0:
        raise ConfigurationError("entity id is required")
    if not entity.name:
        raise ConfigurationError("entity name is required")
    if not content:
        raise ConfigurationError("content is required")

    config = config or EnrichmentConfig()
    raw = await _complete(
        provider,
        build_system_prompt(vocabulary),
        build_user_prompt(
            entity,
            content,
            other_entities=other_entities,
            relationships=relationships,
            context=context,
            max_chars=config.max_content_chars,
        ),
        config,
    )
    parsed = parse_enrichment_response(raw)
    items = enrichment_items(parsed, entity, relationships, job_id=job_id)
    logger.debug(
        "Entity %d (%s): %d enrichment items.", entity.id, entity.name, len(items),
    )
    return items


def enrichment_items(
    parsed: EnrichmentResponse,
    entity: Entity,
    relationships: Sequence[Relationship] = (),
    *,
    job_id: int = 0,
) -> list[ContentAnalysisItem]:
    """Convert a parsed response into pending triage items.

    Relationship suggestions are dropped when their unordered endpoint
    pair already has a relationship, when they point an entity at
    itself, or when they repeat a pair seen earlier in the response.
    """
    common = {
        "job_id": job_id,
        "matched_text": entity.name,
        "entity_id": entity.id,
        "phase": Phase.ENRICHMENT,
    }
    items: list[ContentAnalysisItem] = []

    for update in parsed.description_updates:
        items.append(
            ContentAnalysisItem.from_payload(DetectionType.DESCRIPTION_UPDATE, update, **common)
        )
    for entry in parsed.log_entries:
        items.append(ContentAnalysisItem.from_payload(DetectionType.LOG_ENTRY, entry, **common))

    existing = {rel.pair() for rel in relationships}
    proposed: set[tuple[int, int]] = set()
    for suggestion in parsed.relationships:
        pair = suggestion.pair()
        if suggestion.source_entity_id == suggestion.target_entity_id:
            logger.info(
                "Skipping self-relationship on entity %d for entity %d.",
                suggestion.source_entity_id, entity.id,
            )
            continue
        if pair in existing:
            logger.info(
                "Skipping duplicate relationship suggestion between entities "
                "%d and %d for entity %d.",
                suggestion.source_entity_id, suggestion.target_entity_id, entity.id,
            )
            continue
        if pair in proposed:
            logger.info(
                "Skipping repeated relationship suggestion between entities %d and %d.",
                suggestion.source_entity_id, suggestion.target_entity_id,
            )
            continue
        proposed.add(pair)
        items.append(
            ContentAnalysisItem.from_payload(
                DetectionType.RELATIONSHIP_SUGGESTION, suggestion, **common,
            )
        )

    return items


# =====================================================================
# New-entity detection
# =====================================================================

async def detect_new_entities(
    provider: CompletionProvider,
    campaign_id: int,
    content: str,
    known_entities: Sequence[Entity] = (),
    *,
    job_id: int = 0,
    config: EnrichmentConfig | None = None,
) -> list[ContentAnalysisItem]:
    """Find named entities in *content* that the campaign does not hold.

    Returns an empty list without calling the model when *content* is
    empty.

    Raises:
        CompletionError: if the completion call fails.
    """
    if not content:
        return []

    config = config or EnrichmentConfig()
    raw = await _complete(
        provider,
        build_new_entity_system_prompt(),
        build_new_entity_user_prompt(
            content, known_entities, max_chars=config.max_content_chars,
        ),
        config,
    )
    parsed = parse_new_entity_response(raw)

    known = {e.name.strip().casefold() for e in known_entities if e.name}
    seen: set[str] = set()
    items: list[ContentAnalysisItem] = []
    for suggestion in parsed.new_entities:
        name = suggestion.name.strip()
        if not name:
            continue
        key = name.casefold()
        if key in known or key in seen:
            logger.debug("Skipping already known or repeated entity %r.", name)
            continue
        seen.add(key)

        payload = NewEntitySuggestion(
            name=name,
            entity_type=NewEntityType.coerce(suggestion.entity_type).value,
            description=suggestion.description,
            reasoning=suggestion.reasoning,
        )
        items.append(
            ContentAnalysisItem.from_payload(
                DetectionType.NEW_ENTITY_SUGGESTION,
                payload,
                job_id=job_id,
                matched_text=name,
                phase=Phase.ENRICHMENT,
            )
        )

    logger.info(
        "Campaign %d: %d new-entity suggestions (%d proposed).",
        campaign_id, len(items), len(parsed.new_entities),
    )
    return items


# =====================================================================
# Pipeline agent
# =====================================================================

class EnrichmentAgent:
    """Pipeline agent enriching every entity mentioned in the content.

    Args:
        store: Read access to campaign entities and relationships.
        vocabulary: Optional controlled vocabulary for prompts.
        config: Budgets and prompt sizing.
    """

    name = "enrichment"
    depends_on: tuple[str, ...] = ()

    def __init__(
        self,
        store: EntityStore,
        *,
        vocabulary: Vocabulary | None = None,
        config: EnrichmentConfig | None = None,
    ) -> None:
        self._store = store
        self._vocabulary = vocabulary
        self._config = config or EnrichmentConfig()

    async def run(
        self,
        provider: CompletionProvider,
        input: PipelineInput,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[ContentAnalysisItem]:
        if not input.content:
            return []

        campaign_entities = await self._list_entities(input.campaign_id)
        if input.entities:
            targets = list(input.entities)
        else:
            targets = mentioned_entities(input.content, campaign_entities or [])
        known = campaign_entities if campaign_entities is not None else targets

        items: list[ContentAnalysisItem] = []
        for i, entity in enumerate(targets):
            if _cancelled(cancel):
                logger.info("Enrichment cancelled after %d of %d entities.", i, len(targets))
                return items

            others = targets[:i] + targets[i + 1 :]
            relationships = await self._relationships(entity.id, input.relationships)
            try:
                items.extend(
                    await enrich_entity(
                        provider,
                        entity,
                        input.content,
                        job_id=input.job_id,
                        other_entities=others,
                        relationships=relationships,
                        context=input.context,
                        vocabulary=self._vocabulary,
                        config=self._config,
                    )
                )
            except LorekeeperError as e:
                logger.warning("Failed to enrich entity %d (%r): %s", entity.id, entity.name, e)

        if _cancelled(cancel):
            logger.info("Enrichment cancelled before new-entity detection.")
            return items

        try:
            items.extend(
                await detect_new_entities(
                    provider,
                    input.campaign_id,
                    input.content,
                    known,
                    job_id=input.job_id,
                    config=self._config,
                )
            )
        except LorekeeperError as e:
            logger.warning(
                "New-entity detection failed for campaign %d: %s", input.campaign_id, e,
            )
        return items

    async def _list_entities(self, campaign_id: int) -> list[Entity] | None:
        try:
            return list(await self._store.list_entities(campaign_id))
        except Exception as e:
            logger.warning("Failed to list entities for campaign %d: %s", campaign_id, e)
            return None

    async def _relationships(
        self, entity_id: int, preloaded: Sequence[Relationship] = (),
    ) -> list[Relationship]:
        if preloaded:
            return [r for r in preloaded if entity_id in r.pair()]
        try:
            return list(await self._store.get_relationships(entity_id))
        except Exception as e:
            logger.warning("Failed to get relationships for entity %d: %s", entity_id, e)
            return []


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()
