"""Prompt templates for entity enrichment, new-entity detection, and revision.

System prompts are fixed instructions, optionally extended with the
campaign's controlled vocabulary.  User prompts are assembled from
markdown sections; a section with nothing to show is left out entirely.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from lorekeeper.config import NewEntityType

if TYPE_CHECKING:
    from lorekeeper.executors.context import RetrievedContext
    from lorekeeper.models.base import Entity, Relationship
    from lorekeeper.models.ontology import Vocabulary
    from lorekeeper.models.triage import ContentAnalysisItem

MAX_CONTENT_CHARS = 4000

_ELLIPSIS_BEFORE = "[...]\n\n"
_ELLIPSIS_AFTER = "\n\n[...]"


# =====================================================================
# Entity enrichment prompt
# =====================================================================

ENRICHMENT_SYSTEM = """\
You are a TTRPG campaign analyst assistant. Your job is to analyse
session notes, chapter content, and other campaign writing to suggest
enrichments for campaign entities (NPCs, locations, items, factions, etc.).

Given a piece of campaign content and the current state of an entity that
appears in it, you must produce structured JSON suggesting:

1. **Description updates** - improvements or additions to the entity's
   description based on new information revealed in the content.
2. **Log entries** - chronological event entries that should be added to
   the entity's history log based on what happened in the content.
3. **Relationships** - connections between this entity and other entities
   mentioned in the same content.

Rules:
- Only suggest changes supported by the provided content.
- Do not invent information not present in the source material.
- Keep descriptions concise and in a style consistent with TTRPG notes.
- For relationships, use descriptive types like "ally_of", "enemy_of",
  "located_in", "member_of", "owns", "works_for", "knows", etc.
- If the content does not reveal new information about the entity, return
  empty arrays.
- Do not duplicate existing relationships listed in the input.

You MUST respond with valid JSON only. No markdown, no commentary outside
the JSON object.

Response format:
{
  "descriptionUpdates": [
    {
      "currentDescription": "the entity's current description",
      "suggestedDescription": "an improved description incorporating new info",
      "rationale": "brief explanation of what changed and why"
    }
  ],
  "logEntries": [
    {
      "content": "what happened to or involving this entity",
      "occurredAt": "optional in-game date or time reference"
    }
  ],
  "relationships": [
    {
      "sourceEntityId": 123,
      "sourceEntityName": "Source Entity",
      "targetEntityId": 456,
      "targetEntityName": "Target Entity",
      "relationshipType": "type_of_relationship",
      "description": "brief description of the relationship"
    }
  ]
}"""

ENRICHMENT_USER_CLOSING = (
    "Analyse the source content and produce enrichment suggestions "
    "for the entity above. Respond with JSON only."
)


# =====================================================================
# New-entity detection prompt
# =====================================================================

NEW_ENTITY_SYSTEM = """\
You are a TTRPG campaign analyst. Analyse content to identify
named entities (NPCs, locations, items, factions, creatures, organizations,
events, documents, clues) mentioned but NOT in the campaign database.

Rules:
- Only identify proper nouns and clear named entities.
- Do NOT identify generic references like "the tavern", "a guard",
  "the stranger", or "some soldiers".
- Only identify entities that are clearly distinct from any entity in the
  known entities list.
- Each description should be two to three sentences drawn from the content.

Supported entity types:
  {entity_types}

You MUST respond with valid JSON only. No markdown, no commentary outside
the JSON object.

Response format:
{{
  "new_entities": [
    {{
      "name": "Inspector Barrington",
      "entity_type": "npc",
      "description": "A Scotland Yard detective mentioned in the chapter.",
      "reasoning": "Named character appearing in paragraph 3 who is not in the known entities list"
    }}
  ]
}}

If no new entities are found, return:
{{"new_entities": []}}"""

NEW_ENTITY_USER_CLOSING = (
    "Identify named entities in the content above that are NOT in the "
    "known entities list. Respond with JSON only."
)


# =====================================================================
# Revision prompt
# =====================================================================

REVISION_SYSTEM = """\
You are a TTRPG content editor. Revise the following content to address \
the accepted suggestions while preserving the author's voice and style.

Rules:
- Make ONLY the changes suggested by the accepted findings.
- Do not add new content beyond what is needed to address the findings.
- Preserve formatting, markdown structure, and the author's writing style.
- Return valid JSON with two fields:
  - "revisedContent": the full revised text
  - "summary": a 2-3 sentence description of the changes made

Respond with valid JSON only."""


# =====================================================================
# Builders
# =====================================================================

def build_system_prompt(vocabulary: Vocabulary | None = None) -> str:
    """Enrichment system prompt, extended with the vocabulary when given."""
    if vocabulary is None or vocabulary.is_empty():
        return ENRICHMENT_SYSTEM

    parts = [ENRICHMENT_SYSTEM]

    concrete = vocabulary.concrete_entity_types()
    if concrete:
        parts.append(
            "## Valid Entity Types\n\n"
            f"Only suggest entities with these types: {', '.join(concrete)}"
        )

    if vocabulary.relationship_types:
        lines = ["## Valid Relationship Types", ""]
        for name in sorted(vocabulary.relationship_types):
            rel = vocabulary.relationship_types[name]
            if rel.domain and rel.range:
                lines.append(f"- {name}: {', '.join(rel.domain)} -> {', '.join(rel.range)}")
            else:
                lines.append(f"- {name}")
        lines.append("")
        lines.append("Do not invent new relationship types.")
        parts.append("\n".join(lines))

    return "\n\n".join(parts)


def build_user_prompt(
    entity: Entity,
    content: str,
    *,
    other_entities: Sequence[Entity] = (),
    relationships: Sequence[Relationship] = (),
    context: RetrievedContext | None = None,
    max_chars: int = MAX_CONTENT_CHARS,
) -> str:
    """Enrichment user prompt for a single entity."""
    sections = [
        f"## Source Content\n\n{truncate_content(content, entity.name, max_chars)}\n",
        _entity_section(entity),
    ]

    if relationships:
        sections.append(format_relationships(relationships))

    if other_entities:
        lines = ["## Other Entities in This Content", ""]
        for e in other_entities:
            lines.append(f"- **{e.name}** (ID: {e.id}, Type: {e.entity_type})")
        sections.append("\n".join(lines) + "\n")

    if context is not None:
        campaign = context.campaign_section()
        if campaign:
            sections.append(campaign)
        schema = context.schema_section()
        if schema:
            sections.append(schema)

    sections.append(ENRICHMENT_USER_CLOSING)
    return "\n".join(sections)


def _entity_section(entity: Entity) -> str:
    return "\n".join([
        "## Entity to Enrich",
        "",
        f"- **ID**: {entity.id}",
        f"- **Name**: {entity.name}",
        f"- **Type**: {entity.entity_type}",
        f"- **Current Description**: {entity.description or '(none)'}",
        "",
    ])


def format_relationships(relationships: Iterable[Relationship]) -> str:
    """Existing relationships as ``source -[type]-> target (description)`` lines."""
    lines = ["## Existing Relationships", ""]
    for rel in relationships:
        source = rel.source_entity_name or f"Entity {rel.source_entity_id}"
        target = rel.target_entity_name or f"Entity {rel.target_entity_id}"
        line = f"- {source} -[{rel.relationship_type}]-> {target}"
        if rel.description:
            line += f" ({rel.description})"
        lines.append(line)
    return "\n".join(lines) + "\n"


def truncate_content(content: str, name: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    """Cut *content* to a window of *max_chars* codepoints around *name*.

    Content within the budget is returned unchanged.  Otherwise the
    window is centred on the first case-insensitive occurrence of
    *name* (the start of the text when absent) and ``[...]`` marks each
    side that was cut.  A name longer than half the window starts the
    window so the name is kept whole.
    """
    if len(content) <= max_chars:
        return content

    idx = _find_casefolded(content, name)
    if idx < 0:
        return content[:max_chars] + _ELLIPSIS_AFTER

    half = max_chars // 2
    if len(name) > half:
        # the name would not fit in the centred window; start at it instead
        start = min(idx, len(content) - max_chars)
        end = start + max_chars
    else:
        start = idx - half
        end = idx + half
        if start < 0:
            end -= start
            start = 0
        if end > len(content):
            start = max(0, start - (end - len(content)))
            end = len(content)

    prefix = _ELLIPSIS_BEFORE if start > 0 else ""
    suffix = _ELLIPSIS_AFTER if end < len(content) else ""
    return f"{prefix}{content[start:end]}{suffix}"


def _find_casefolded(content: str, name: str) -> int:
    """Index in *content* of the first case-insensitive match of *name*, or -1.

    Case folding can change string length (``"ß"`` folds to ``"ss"``),
    so each folded character is mapped back to its source index.
    """
    needle = name.casefold()
    folded: list[str] = []
    origin: list[int] = []
    for i, ch in enumerate(content):
        f = ch.casefold()
        folded.append(f)
        origin.extend([i] * len(f))

    pos = "".join(folded).find(needle)
    if pos < 0:
        return -1
    if pos >= len(origin):
        return len(content)
    return origin[pos]


def build_new_entity_system_prompt() -> str:
    return NEW_ENTITY_SYSTEM.format(
        entity_types=", ".join(t.value for t in NewEntityType),
    )


def build_new_entity_user_prompt(
    content: str,
    known_entities: Sequence[Entity] = (),
    *,
    max_chars: int = MAX_CONTENT_CHARS,
) -> str:
    """Detection user prompt; content is cut from the start, without markers."""
    sections = [f"## Source Content\n\n{content[:max_chars]}\n"]
    if known_entities:
        lines = ["## Known Entities (already in database)", ""]
        for e in known_entities:
            lines.append(f"- {e.name} ({e.entity_type})")
        sections.append("\n".join(lines) + "\n")
    sections.append(NEW_ENTITY_USER_CLOSING)
    return "\n".join(sections)


def build_revision_system_prompt() -> str:
    return REVISION_SYSTEM


def build_revision_user_prompt(
    original_content: str,
    accepted_items: Sequence[ContentAnalysisItem],
    schema_text: str = "",
) -> str:
    """Revision user prompt listing every accepted finding."""
    parts = ["## Original Content", "", original_content, "", "## Accepted Findings", ""]
    for i, item in enumerate(accepted_items, start=1):
        parts.append(f"### Finding {i}")
        parts.append("")
        parts.append(f"**Detection Type**: {item.detection_type.value}")
        parts.append(f"**Matched Text**: {item.matched_text}")
        description = item.suggested_content.get("description")
        if isinstance(description, str) and description:
            parts.append(f"**Description**: {description}")
        suggestion = item.suggested_content.get("suggestion")
        if isinstance(suggestion, str) and suggestion:
            parts.append(f"**Suggestion**: {suggestion}")
        parts.append("")

    if schema_text:
        parts.extend(["## Game System Context", "", "```yaml", schema_text, "```", ""])

    return "\n".join(parts)
