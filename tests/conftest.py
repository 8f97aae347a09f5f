from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeEntityStore, FakeProvider

from lorekeeper.models.base import Entity, Relationship

DATA_DIR = Path(__file__).resolve().parent / "data"


@pytest.fixture
def data_dir() -> Path:
    return DATA_DIR


@pytest.fixture
def kael() -> Entity:
    return Entity(id=1, name="Kael", entity_type="npc", description="A wandering sellsword.")


@pytest.fixture
def campaign_entities(kael: Entity) -> list[Entity]:
    return [
        kael,
        Entity(id=2, name="Mira", entity_type="npc"),
        Entity(id=3, name="The Rusty Anchor", entity_type="location"),
        Entity(id=4, name="Order of Ash", entity_type="faction"),
    ]


@pytest.fixture
def kael_relationships() -> list[Relationship]:
    return [
        Relationship(
            id=10,
            source_entity_id=1,
            target_entity_id=2,
            relationship_type="ally_of",
            description="Fought together at the pass",
            source_entity_name="Kael",
            target_entity_name="Mira",
        ),
    ]


@pytest.fixture
def store(
    campaign_entities: list[Entity],
    kael_relationships: list[Relationship],
) -> FakeEntityStore:
    return FakeEntityStore(campaign_entities, {1: kael_relationships})


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
