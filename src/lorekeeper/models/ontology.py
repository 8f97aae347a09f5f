"""Controlled vocabulary — the valid entity and relationship types.

The vocabulary is read from two YAML files in one directory::

    entity-types.yaml         types: {npc: {parent: agent}, agent: {abstract: true}, ...}
    relationship-types.yaml   types: {located_at: {domain: [agent], range: [place]}, ...}

Unknown keys are rejected so that typos in hand-edited files surface at
load time instead of silently dropping constraints.  When supplied to
the enrichment prompts, only concrete (non-abstract) entity types are
offered to the model.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

ENTITY_TYPES_FILE = "entity-types.yaml"
RELATIONSHIP_TYPES_FILE = "relationship-types.yaml"


class EntityTypeDef(BaseModel):
    """A single entity type in the type hierarchy."""

    model_config = ConfigDict(extra="forbid")

    parent: str = ""
    abstract: bool = False
    description: str = ""
    children: list[str] = Field(default_factory=list)


class RelationshipTypeDef(BaseModel):
    """A relationship type with its allowed source (domain) and target (range) types."""

    model_config = ConfigDict(extra="forbid")

    inverse: str = ""
    symmetric: bool = False
    display_label: str = ""
    inverse_display_label: str = ""
    domain: list[str] = Field(default_factory=list)
    range: list[str] = Field(default_factory=list)
    genre: list[str] = Field(default_factory=list)
    description: str = ""


class _EntityTypeFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    types: dict[str, EntityTypeDef] = Field(default_factory=dict)


class _RelationshipTypeFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    types: dict[str, RelationshipTypeDef] = Field(default_factory=dict)


class Vocabulary(BaseModel):
    """Valid entity and relationship types for one campaign setting."""

    entity_types: dict[str, EntityTypeDef] = Field(default_factory=dict)
    relationship_types: dict[str, RelationshipTypeDef] = Field(default_factory=dict)

    def concrete_entity_types(self) -> list[str]:
        """Sorted names of non-abstract entity types."""
        return sorted(name for name, d in self.entity_types.items() if not d.abstract)

    def is_empty(self) -> bool:
        return not self.entity_types and not self.relationship_types


def load_vocabulary(directory: str | Path) -> Vocabulary:
    """Load both vocabulary files from ``directory``.

    Raises:
        OSError: if either file cannot be read.
        yaml.YAMLError: if either file is not valid YAML.
        pydantic.ValidationError: if either file has unknown keys or
            wrongly typed values.
    """
    base = Path(directory)
    entity_file = _EntityTypeFile.model_validate(
        _read_yaml(base / ENTITY_TYPES_FILE),
    )
    relationship_file = _RelationshipTypeFile.model_validate(
        _read_yaml(base / RELATIONSHIP_TYPES_FILE),
    )
    return Vocabulary(
        entity_types=entity_file.types,
        relationship_types=relationship_file.types,
    )


def _read_yaml(path: Path) -> dict:
    with path.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data or {}
