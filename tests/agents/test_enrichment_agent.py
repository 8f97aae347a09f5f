from __future__ import annotations

import asyncio
import json

import pytest
from fakes import FakeEntityStore, FakeProvider

from lorekeeper.agents.enrichment_agent import (
    EnrichmentAgent,
    detect_new_entities,
    enrich_entity,
)
from lorekeeper.config import EnrichmentConfig
from lorekeeper.errors import CompletionError, ConfigurationError
from lorekeeper.models.base import Entity, Relationship
from lorekeeper.models.triage import DetectionType, Phase, Resolution
from lorekeeper.workflow.pipeline import PipelineInput

CONTENT = "Kael and Mira shared a drink at The Rusty Anchor before the Order of Ash arrived."


def _rel(source: int, target: int, rel_type: str = "knows") -> dict[str, object]:
    return {
        "sourceEntityId": source,
        "sourceEntityName": f"E{source}",
        "targetEntityId": target,
        "targetEntityName": f"E{target}",
        "relationshipType": rel_type,
        "description": "",
    }


def _enrichment(**fields: object) -> str:
    return json.dumps({"descriptionUpdates": [], "logEntries": [], "relationships": [], **fields})


# ── enrich_entity ───────────────────────────────────────────────────

async def test_enrich_entity_converts_every_suggestion(kael: Entity) -> None:
    provider = FakeProvider([
        _enrichment(
            descriptionUpdates=[{
                "currentDescription": "A wandering sellsword.",
                "suggestedDescription": "A sellsword sworn to Mira.",
                "rationale": "New oath.",
            }],
            logEntries=[{"content": "Kael swore an oath.", "occurredAt": "Day 12"}],
            relationships=[_rel(1, 3, "frequents")],
        )
    ])

    items = await enrich_entity(provider, kael, CONTENT, job_id=9)

    assert [i.detection_type for i in items] == [
        DetectionType.DESCRIPTION_UPDATE,
        DetectionType.LOG_ENTRY,
        DetectionType.RELATIONSHIP_SUGGESTION,
    ]
    for item in items:
        assert item.job_id == 9
        assert item.entity_id == 1
        assert item.matched_text == "Kael"
        assert item.resolution is Resolution.PENDING
        assert item.phase is Phase.ENRICHMENT
    assert items[0].suggested_content["suggestedDescription"] == "A sellsword sworn to Mira."
    assert items[1].suggested_content == {"content": "Kael swore an oath.", "occurredAt": "Day 12"}
    assert items[2].suggested_content["relationshipType"] == "frequents"


async def test_enrich_entity_uses_budget_and_prompts(kael: Entity) -> None:
    provider = FakeProvider([_enrichment()])

    items = await enrich_entity(provider, kael, CONTENT)

    assert items == []
    request = provider.requests[0]
    assert request.max_tokens == 2048
    assert request.temperature == 0.3
    assert "TTRPG campaign analyst" in request.system_prompt
    assert "- **Name**: Kael" in request.user_prompt


async def test_enrich_entity_respects_config_budget(kael: Entity) -> None:
    provider = FakeProvider([_enrichment()])
    config = EnrichmentConfig(enrichment_max_tokens=512, enrichment_temperature=0.0)

    await enrich_entity(provider, kael, CONTENT, config=config)

    assert provider.requests[0].max_tokens == 512
    assert provider.requests[0].temperature == 0.0


async def test_existing_pair_is_skipped_in_both_directions(
    kael: Entity,
    kael_relationships: list[Relationship],
) -> None:
    provider = FakeProvider([
        _enrichment(relationships=[_rel(1, 2, "ally_of"), _rel(2, 1, "friend_of"), _rel(1, 3)])
    ])

    items = await enrich_entity(provider, kael, CONTENT, relationships=kael_relationships)

    assert len(items) == 1
    payload = items[0].suggested_content
    assert (payload["sourceEntityId"], payload["targetEntityId"]) == (1, 3)


async def test_self_edges_and_repeated_pairs_are_skipped(kael: Entity) -> None:
    provider = FakeProvider([
        _enrichment(relationships=[_rel(1, 1), _rel(1, 3), _rel(3, 1, "owns"), _rel(1, 4)])
    ])

    items = await enrich_entity(provider, kael, CONTENT)

    pairs = [
        (i.suggested_content["sourceEntityId"], i.suggested_content["targetEntityId"])
        for i in items
    ]
    assert pairs == [(1, 3), (1, 4)]


@pytest.mark.parametrize("raw", ["", "not json at all", "```json\n```", "[]"])
async def test_malformed_output_yields_no_items(kael: Entity, raw: str) -> None:
    items = await enrich_entity(FakeProvider([raw]), kael, CONTENT)

    assert items == []


@pytest.mark.parametrize(
    ("entity", "content"),
    [
        (Entity(id=0, name="Kael"), CONTENT),
        (Entity(id=1, name=""), CONTENT),
        (Entity(id=1, name="Kael"), ""),
    ],
)
async def test_enrich_entity_preconditions(entity: Entity, content: str) -> None:
    provider = FakeProvider()

    with pytest.raises(ConfigurationError):
        await enrich_entity(provider, entity, content)

    assert provider.requests == []


async def test_completion_failure_propagates(kael: Entity) -> None:
    provider = FakeProvider([RuntimeError("service down")])

    with pytest.raises(CompletionError):
        await enrich_entity(provider, kael, CONTENT)


# ── detect_new_entities ─────────────────────────────────────────────

async def test_detect_new_entities(campaign_entities: list[Entity]) -> None:
    provider = FakeProvider([json.dumps({"new_entities": [
        {"name": "Inspector Barrington", "entity_type": "NPC", "description": "A detective.",
         "reasoning": "Named in paragraph 3"},
        {"name": "The Gilded Eye", "entity_type": "artifact", "description": "A relic.",
         "reasoning": "Named object"},
        {"name": "  ", "entity_type": "npc"},
        {"name": "mira", "entity_type": "npc"},
        {"name": "inspector barrington", "entity_type": "npc"},
    ]})])

    items = await detect_new_entities(provider, 5, CONTENT, campaign_entities, job_id=3)

    assert [i.matched_text for i in items] == ["Inspector Barrington", "The Gilded Eye"]
    assert items[0].suggested_content == {
        "entity_type": "npc",
        "description": "A detective.",
        "reasoning": "Named in paragraph 3",
    }
    assert items[1].suggested_content["entity_type"] == "other"
    for item in items:
        assert item.detection_type is DetectionType.NEW_ENTITY_SUGGESTION
        assert item.entity_id is None
        assert item.job_id == 3
    request = provider.requests[0]
    assert "- Mira (npc)" in request.user_prompt
    assert request.max_tokens == 2048


async def test_detect_new_entities_empty_content_skips_call() -> None:
    provider = FakeProvider()

    assert await detect_new_entities(provider, 5, "", []) == []
    assert provider.requests == []


async def test_detect_new_entities_malformed_output() -> None:
    assert await detect_new_entities(FakeProvider(["{oops"]), 5, CONTENT) == []


# ── EnrichmentAgent ─────────────────────────────────────────────────

def _route(request_log: list[str]):
    def handler(request) -> str:
        if "new_entities" in request.system_prompt:
            request_log.append("detect")
            return json.dumps({"new_entities": [{"name": "Barrington", "entity_type": "npc"}]})
        name = request.user_prompt.split("- **Name**: ", 1)[1].split("\n", 1)[0]
        request_log.append(name)
        return _enrichment(logEntries=[{"content": f"{name} was there."}])

    return handler


async def test_agent_enriches_mentioned_entities_then_detects(store: FakeEntityStore) -> None:
    log: list[str] = []
    agent = EnrichmentAgent(store)

    items = await agent.run(
        FakeProvider(handler=_route(log)),
        PipelineInput(campaign_id=5, content=CONTENT, job_id=2),
    )

    assert log == ["Kael", "Mira", "The Rusty Anchor", "Order of Ash", "detect"]
    assert [i.matched_text for i in items] == [
        "Kael", "Mira", "The Rusty Anchor", "Order of Ash", "Barrington",
    ]
    assert store.relationship_lookups == [1, 2, 3, 4]
    assert agent.name == "enrichment"
    assert list(agent.depends_on) == []


async def test_agent_prefers_explicit_entities(store: FakeEntityStore, kael: Entity) -> None:
    log: list[str] = []

    await EnrichmentAgent(store).run(
        FakeProvider(handler=_route(log)),
        PipelineInput(campaign_id=5, content=CONTENT, entities=(kael,)),
    )

    assert log == ["Kael", "detect"]


async def test_agent_passes_other_entities_and_relationships(store: FakeEntityStore) -> None:
    provider = FakeProvider(default=_enrichment())

    await EnrichmentAgent(store).run(provider, PipelineInput(campaign_id=5, content=CONTENT))

    kael_prompt = provider.requests[0].user_prompt
    assert "- Kael -[ally_of]-> Mira" in kael_prompt
    assert "- **Mira** (ID: 2, Type: npc)" in kael_prompt
    assert "- **Kael** (ID: 1" not in kael_prompt


async def test_agent_isolates_entity_failures(store: FakeEntityStore) -> None:
    provider = FakeProvider([
        RuntimeError("boom"),
        _enrichment(logEntries=[{"content": "Mira hid."}]),
        _enrichment(),
        _enrichment(),
        '{"new_entities": []}',
    ])

    items = await EnrichmentAgent(store).run(provider, PipelineInput(campaign_id=5, content=CONTENT))

    assert [i.matched_text for i in items] == ["Mira"]
    assert len(provider.requests) == 5


async def test_agent_survives_detection_failure(store: FakeEntityStore, kael: Entity) -> None:
    provider = FakeProvider([_enrichment(logEntries=[{"content": "x"}]), RuntimeError("down")])

    items = await EnrichmentAgent(store).run(
        provider, PipelineInput(campaign_id=5, content=CONTENT, entities=(kael,)),
    )

    assert len(items) == 1


async def test_agent_stops_when_cancelled(store: FakeEntityStore) -> None:
    cancel = asyncio.Event()
    calls: list[str] = []

    def handler(request) -> str:
        calls.append("call")
        cancel.set()
        return _enrichment(logEntries=[{"content": "x"}])

    items = await EnrichmentAgent(store).run(
        FakeProvider(handler=handler),
        PipelineInput(campaign_id=5, content=CONTENT),
        cancel=cancel,
    )

    assert calls == ["call"]
    assert len(items) == 1


async def test_agent_empty_content() -> None:
    provider = FakeProvider()

    items = await EnrichmentAgent(FakeEntityStore()).run(
        provider, PipelineInput(campaign_id=5, content=""),
    )

    assert items == []
    assert provider.requests == []


async def test_agent_listing_failure_falls_back_to_explicit_entities(kael: Entity) -> None:
    provider = FakeProvider(default=_enrichment())
    store = FakeEntityStore(fail_listing=True)

    await EnrichmentAgent(store).run(
        provider, PipelineInput(campaign_id=5, content=CONTENT, entities=(kael,)),
    )

    assert len(provider.requests) == 2
    assert "- Kael (npc)" in provider.requests[1].user_prompt


async def test_agent_uses_preloaded_relationships(
    store: FakeEntityStore,
    kael: Entity,
) -> None:
    provider = FakeProvider(default=_enrichment())
    feud = Relationship(
        source_entity_id=3, target_entity_id=1, relationship_type="bars",
        source_entity_name="The Rusty Anchor", target_entity_name="Kael",
    )
    unrelated = Relationship(
        source_entity_id=2, target_entity_id=4, relationship_type="member_of",
        source_entity_name="Mira", target_entity_name="Order of Ash",
    )

    await EnrichmentAgent(store).run(
        provider,
        PipelineInput(
            campaign_id=5, content=CONTENT, entities=(kael,), relationships=(feud, unrelated),
        ),
    )

    assert store.relationship_lookups == []
    prompt = provider.requests[0].user_prompt
    assert "- The Rusty Anchor -[bars]-> Kael" in prompt
    assert "member_of" not in prompt
