from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from lorekeeper.errors import InvalidTransitionError
from lorekeeper.models.base import DescriptionUpdate, LogEntry, NewEntitySuggestion
from lorekeeper.models.triage import (
    ContentAnalysisItem,
    DetectionType,
    Phase,
    Resolution,
    count_resolved,
)


def _item(**fields: object) -> ContentAnalysisItem:
    return ContentAnalysisItem.from_payload(
        DetectionType.LOG_ENTRY,
        LogEntry(content="Kael fled the city.", occurred_at="Day 3"),
        job_id=7,
        matched_text="Kael",
        entity_id=1,
        **fields,
    )


def test_new_items_are_pending() -> None:
    item = _item()

    assert item.resolution is Resolution.PENDING
    assert item.resolved_entity_id is None
    assert item.resolved_at is None
    assert not item.is_resolved
    assert item.phase is Phase.ENRICHMENT


def test_payload_is_stored_with_camel_case_keys() -> None:
    item = ContentAnalysisItem.from_payload(
        DetectionType.DESCRIPTION_UPDATE,
        DescriptionUpdate(
            current_description="old",
            suggested_description="new",
            rationale="chapter 3",
        ),
        matched_text="Kael",
    )

    assert item.suggested_content == {
        "currentDescription": "old",
        "suggestedDescription": "new",
        "rationale": "chapter 3",
    }
    assert item.payload() == DescriptionUpdate(
        current_description="old", suggested_description="new", rationale="chapter 3",
    )


def test_new_entity_payload_leaves_out_name() -> None:
    item = ContentAnalysisItem.from_payload(
        DetectionType.NEW_ENTITY_SUGGESTION,
        NewEntitySuggestion(name="Barrington", entity_type="npc", description="d", reasoning="r"),
        matched_text="Barrington",
    )

    assert item.suggested_content == {"entity_type": "npc", "description": "d", "reasoning": "r"}


def test_from_payload_rejects_mismatched_variant() -> None:
    with pytest.raises(TypeError):
        ContentAnalysisItem.from_payload(
            DetectionType.DESCRIPTION_UPDATE,
            LogEntry(content="x"),
            matched_text="Kael",
        )


@pytest.mark.parametrize("resolution", [Resolution.ACCEPTED, Resolution.NEW_ENTITY])
def test_resolve_with_entity(resolution: Resolution) -> None:
    now = datetime(2026, 1, 2, tzinfo=timezone.utc)
    original = _item()

    resolved = original.resolve(resolution, 42, now=now)

    assert resolved.resolution is resolution
    assert resolved.resolved_entity_id == 42
    assert resolved.resolved_at == now
    assert original.resolution is Resolution.PENDING


def test_dismiss_without_entity() -> None:
    resolved = _item().resolve("dismissed")

    assert resolved.resolution is Resolution.DISMISSED
    assert resolved.resolved_entity_id is None
    assert resolved.resolved_at is not None


def test_accept_requires_entity_id() -> None:
    with pytest.raises(InvalidTransitionError):
        _item().resolve(Resolution.ACCEPTED)


def test_dismiss_rejects_entity_id() -> None:
    with pytest.raises(InvalidTransitionError):
        _item().resolve(Resolution.DISMISSED, 5)


def test_resolution_is_one_way() -> None:
    resolved = _item().resolve(Resolution.DISMISSED)

    with pytest.raises(InvalidTransitionError):
        resolved.resolve(Resolution.ACCEPTED, 1)


def test_cannot_resolve_to_pending() -> None:
    with pytest.raises(InvalidTransitionError):
        _item().resolve(Resolution.PENDING)


def test_invariant_enforced_on_construction() -> None:
    with pytest.raises(ValidationError):
        ContentAnalysisItem(
            detection_type=DetectionType.LOG_ENTRY,
            matched_text="Kael",
            resolution=Resolution.ACCEPTED,
        )
    with pytest.raises(ValidationError):
        ContentAnalysisItem(
            detection_type=DetectionType.LOG_ENTRY,
            matched_text="Kael",
            resolved_entity_id=3,
        )


def test_count_resolved_per_phase() -> None:
    items = [
        _item(phase=Phase.IDENTIFICATION),
        _item(phase=Phase.IDENTIFICATION).resolve(Resolution.DISMISSED),
        _item(),
        _item().resolve(Resolution.ACCEPTED, 1),
        _item().resolve(Resolution.NEW_ENTITY, 9),
    ]

    counts = count_resolved(items)

    assert counts.identification.total == 2
    assert counts.identification.resolved == 1
    assert counts.identification.pending == 1
    assert counts.enrichment.total == 3
    assert counts.enrichment.resolved == 2
    assert counts.for_phase("enrichment").pending == 1
    assert counts.total == 5
    assert counts.resolved == 3


def test_count_resolved_empty() -> None:
    counts = count_resolved([])

    assert counts.total == 0
    assert counts.resolved == 0
