"""Response parsers for model output.

Model output is untrusted text.  The parsers here never raise: empty or
undecodable output becomes an empty result, and a list element that
does not fit its record shape is dropped while its siblings are kept.
Each problem is logged with a bounded excerpt of the offending text.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from lorekeeper.models.base import (
    DescriptionUpdate,
    EnrichmentResponse,
    LogEntry,
    NewEntityResponse,
    NewEntitySuggestion,
    RelationshipSuggestion,
    RevisionResult,
)

logger = logging.getLogger(__name__)

_EXCERPT_CHARS = 200
_FENCE = "```"

M = TypeVar("M", bound=BaseModel)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any.

    The opening fence line (with or without a language tag) and a
    trailing fence are removed; surrounding whitespace is trimmed.  An
    opening fence with nothing after it yields ``""``.
    """
    text = text.strip()
    if not text.startswith(_FENCE):
        return text

    newline = text.find("\n")
    if newline < 0:
        return ""
    text = text[newline + 1 :].strip()
    if text.endswith(_FENCE):
        text = text[: -len(_FENCE)]
    return text.strip()


def _excerpt(text: str) -> str:
    return text[:_EXCERPT_CHARS]


# =====================================================================
# Envelopes (lists kept untyped so elements validate one at a time)
# =====================================================================

class _EnrichmentEnvelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description_updates: list[Any] | None = None
    log_entries: list[Any] | None = None
    relationships: list[Any] | None = None


class _NewEntityEnvelope(BaseModel):
    new_entities: list[Any] | None = None


class _RevisionEnvelope(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    revised_content: str
    summary: str | None = None


def _decode(envelope: type[M], cleaned: str, what: str) -> M | None:
    try:
        return envelope.model_validate_json(cleaned)
    except ValidationError as e:
        logger.warning(
            "Failed to parse %s response: %d error(s) (response: %s)",
            what, e.error_count(), _excerpt(cleaned),
        )
        return None


def _validate_each(model: type[M], elements: list[Any] | None, what: str) -> list[M]:
    records: list[M] = []
    for element in elements or []:
        try:
            records.append(model.model_validate(element))
        except ValidationError as e:
            logger.warning(
                "Dropping malformed %s: %d error(s) (element: %s)",
                what, e.error_count(), _excerpt(repr(element)),
            )
    return records


# =====================================================================
# Parsers
# =====================================================================

def parse_enrichment_response(text: str) -> EnrichmentResponse:
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        logger.warning("Enrichment model returned an empty response.")
        return EnrichmentResponse()

    envelope = _decode(_EnrichmentEnvelope, cleaned, "enrichment")
    if envelope is None:
        return EnrichmentResponse()

    return EnrichmentResponse(
        description_updates=_validate_each(
            DescriptionUpdate, envelope.description_updates, "description update",
        ),
        log_entries=_validate_each(LogEntry, envelope.log_entries, "log entry"),
        relationships=_validate_each(
            RelationshipSuggestion, envelope.relationships, "relationship suggestion",
        ),
    )


def parse_new_entity_response(text: str) -> NewEntityResponse:
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        logger.warning("New-entity detection returned an empty response.")
        return NewEntityResponse()

    envelope = _decode(_NewEntityEnvelope, cleaned, "new-entity")
    if envelope is None:
        return NewEntityResponse()

    return NewEntityResponse(
        new_entities=_validate_each(
            NewEntitySuggestion, envelope.new_entities, "new-entity suggestion",
        ),
    )


def parse_revision_response(text: str) -> RevisionResult:
    """Decode ``{revisedContent, summary}``.

    Output that is not such an object is taken verbatim (trimmed) as the
    revised content with an empty summary.
    """
    cleaned = strip_code_fences(text or "")
    if not cleaned:
        return RevisionResult()

    try:
        envelope = _RevisionEnvelope.model_validate_json(cleaned)
    except ValidationError:
        logger.info(
            "Revision response is not JSON; using raw text (response: %s)",
            _excerpt(cleaned),
        )
        return RevisionResult(revised_content=text.strip())

    return RevisionResult(
        revised_content=envelope.revised_content,
        summary=envelope.summary or "",
    )
