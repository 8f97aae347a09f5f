"""Triage records and the resolution state machine.

A ``ContentAnalysisItem`` is created by an agent in the ``pending``
state and moved exactly once to a terminal resolution by human review
or an automated acceptance rule::

    pending ──► accepted     (resolved_entity_id required)
            ├─► new_entity   (resolved_entity_id required)
            └─► dismissed    (resolved_entity_id forbidden)

Items are immutable; ``resolve`` returns the resolved copy.  Job-level
counters are derived from item states by ``count_resolved`` and never
stored independently.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lorekeeper.errors import InvalidTransitionError
from lorekeeper.models.base import (
    DescriptionUpdate,
    LogEntry,
    NewEntitySuggestion,
    RelationshipSuggestion,
)


class DetectionType(str, Enum):
    DESCRIPTION_UPDATE = "description_update"
    LOG_ENTRY = "log_entry"
    RELATIONSHIP_SUGGESTION = "relationship_suggestion"
    NEW_ENTITY_SUGGESTION = "new_entity_suggestion"


class Phase(str, Enum):
    """Identification is raw detection; enrichment is LLM-elaborated."""

    IDENTIFICATION = "identification"
    ENRICHMENT = "enrichment"


class Resolution(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    NEW_ENTITY = "new_entity"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self is not Resolution.PENDING

    @property
    def requires_entity(self) -> bool:
        return self in (Resolution.ACCEPTED, Resolution.NEW_ENTITY)


_PAYLOAD_TYPES: dict[DetectionType, type[BaseModel]] = {
    DetectionType.DESCRIPTION_UPDATE: DescriptionUpdate,
    DetectionType.LOG_ENTRY: LogEntry,
    DetectionType.RELATIONSHIP_SUGGESTION: RelationshipSuggestion,
    DetectionType.NEW_ENTITY_SUGGESTION: NewEntitySuggestion,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentAnalysisItem(BaseModel):
    """A single machine-generated suggestion awaiting a triage decision.

    ``suggested_content`` holds the payload as plain JSON-compatible data
    so the record can be persisted as-is; call ``payload()`` to decode it
    into the variant matching ``detection_type``.
    """

    model_config = ConfigDict(frozen=True)

    job_id: int = 0
    position: int = 0
    detection_type: DetectionType
    matched_text: str
    entity_id: int | None = None
    suggested_content: dict[str, Any] = Field(default_factory=dict)
    phase: Phase = Phase.ENRICHMENT
    resolution: Resolution = Resolution.PENDING
    resolved_entity_id: int | None = None
    agent_name: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None

    # ── Validators ──────────────────────────────────────────────────
    @model_validator(mode="after")
    def _check_resolution_invariant(self) -> ContentAnalysisItem:
        has_entity = self.resolved_entity_id is not None
        if has_entity != self.resolution.requires_entity:
            raise ValueError(
                f"resolved_entity_id must be set exactly when resolution is "
                f"accepted or new_entity (resolution={self.resolution.value}, "
                f"resolved_entity_id={self.resolved_entity_id})"
            )
        return self

    # ── Payload ─────────────────────────────────────────────────────
    @classmethod
    def from_payload(
        cls,
        detection_type: DetectionType,
        payload: BaseModel,
        **fields: Any,
    ) -> ContentAnalysisItem:
        """Build a pending item carrying ``payload`` in wire form."""
        expected = _PAYLOAD_TYPES[detection_type]
        if not isinstance(payload, expected):
            raise TypeError(
                f"{detection_type.value} expects {expected.__name__}, "
                f"got {type(payload).__name__}"
            )
        return cls(
            detection_type=detection_type,
            suggested_content=payload.model_dump(mode="json", by_alias=True),
            **fields,
        )

    def payload(self) -> BaseModel:
        """Decode ``suggested_content`` into its typed variant."""
        return _PAYLOAD_TYPES[self.detection_type].model_validate(self.suggested_content)

    # ── Transitions ─────────────────────────────────────────────────
    @property
    def is_resolved(self) -> bool:
        return self.resolution.is_terminal

    def resolve(
        self,
        resolution: Resolution | str,
        resolved_entity_id: int | None = None,
        *,
        now: datetime | None = None,
    ) -> ContentAnalysisItem:
        """Return a copy moved from ``pending`` to a terminal resolution.

        Raises:
            InvalidTransitionError: if the item is already resolved, the
                target is ``pending``, or the entity id does not match
                the target's requirement.
        """
        target = Resolution(resolution)
        if self.is_resolved:
            raise InvalidTransitionError(
                f"item {self.job_id}/{self.position} is already {self.resolution.value}"
            )
        if not target.is_terminal:
            raise InvalidTransitionError("cannot resolve an item back to pending")
        if target.requires_entity and resolved_entity_id is None:
            raise InvalidTransitionError(
                f"resolution {target.value} requires a resolved entity id"
            )
        if not target.requires_entity and resolved_entity_id is not None:
            raise InvalidTransitionError(
                f"resolution {target.value} must not carry a resolved entity id"
            )
        return self.model_copy(
            update={
                "resolution": target,
                "resolved_entity_id": resolved_entity_id,
                "resolved_at": now or _utcnow(),
            }
        )


# =====================================================================
# Derived job counters
# =====================================================================

@dataclass(frozen=True)
class PhaseCounts:
    total: int = 0
    resolved: int = 0

    @property
    def pending(self) -> int:
        return self.total - self.resolved


@dataclass(frozen=True)
class ResolvedCounts:
    """Per-phase resolution counters for one analysis job."""

    identification: PhaseCounts = PhaseCounts()
    enrichment: PhaseCounts = PhaseCounts()

    @property
    def total(self) -> int:
        return self.identification.total + self.enrichment.total

    @property
    def resolved(self) -> int:
        return self.identification.resolved + self.enrichment.resolved

    def for_phase(self, phase: Phase | str) -> PhaseCounts:
        return getattr(self, Phase(phase).value)


def count_resolved(items: Iterable[ContentAnalysisItem]) -> ResolvedCounts:
    """Recompute job counters from item states, phases counted separately."""
    totals = {phase: 0 for phase in Phase}
    resolved = {phase: 0 for phase in Phase}
    for item in items:
        totals[item.phase] += 1
        if item.is_resolved:
            resolved[item.phase] += 1
    return ResolvedCounts(
        identification=PhaseCounts(
            totals[Phase.IDENTIFICATION], resolved[Phase.IDENTIFICATION],
        ),
        enrichment=PhaseCounts(totals[Phase.ENRICHMENT], resolved[Phase.ENRICHMENT]),
    )
