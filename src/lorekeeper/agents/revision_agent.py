"""Revision — rewrite content so it reflects the accepted suggestions."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from lorekeeper.agents.parser import parse_revision_response
from lorekeeper.agents.prompts import build_revision_system_prompt, build_revision_user_prompt
from lorekeeper.config import EnrichmentConfig
from lorekeeper.errors import CompletionError, ConfigurationError
from lorekeeper.models.base import RevisionResult
from lorekeeper.models.triage import ContentAnalysisItem
from lorekeeper.ports import CompletionProvider, CompletionRequest

logger = logging.getLogger(__name__)


async def generate_revision(
    provider: CompletionProvider,
    original_content: str,
    accepted_items: Sequence[ContentAnalysisItem] | None,
    schema_text: str = "",
    *,
    config: EnrichmentConfig | None = None,
) -> RevisionResult:
    """Produce one revised version of *original_content*.

    With no accepted items the original is returned unchanged, with an
    empty summary, and the model is not called.

    Raises:
        ConfigurationError: if *original_content* is empty.
        CompletionError: if the completion call fails.
    """
    if not original_content:
        raise ConfigurationError("original content is required")
    if not accepted_items:
        return RevisionResult(revised_content=original_content, summary="")

    config = config or EnrichmentConfig()
    request = CompletionRequest(
        system_prompt=build_revision_system_prompt(),
        user_prompt=build_revision_user_prompt(original_content, accepted_items, schema_text),
        max_tokens=config.revision_max_tokens,
        temperature=config.revision_temperature,
    )
    try:
        response = await provider.complete(request)
    except CompletionError:
        raise
    except Exception as e:
        raise CompletionError(f"revision completion failed: {e}") from e

    result = parse_revision_response(response.content)
    logger.info(
        "Revision from %d accepted items: %d -> %d chars.",
        len(accepted_items), len(original_content), len(result.revised_content),
    )
    return result
