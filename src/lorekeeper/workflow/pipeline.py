"""Pipeline — staged orchestration of content-analysis agents.

A pipeline is an ordered list of named stages.  Each stage holds agents
that declare dependencies on other agents by name::

    Stage("analysis", Phase.IDENTIFICATION, [detector, linker])
    Stage("enrichment", Phase.ENRICHMENT, [EnrichmentAgent(store)])

Within a stage, agents run in dependency order; agents caught in a
dependency cycle (and anything depending on them) are skipped.  Later
stages see the items produced by earlier ones through
``PipelineInput.prior_results``.

A failing agent never fails the run: its error is logged and its
contribution omitted.  Items are tagged with the producing agent's name
and numbered in final emission order.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from lorekeeper.agents.enrichment_agent import EnrichmentAgent
from lorekeeper.config import EnrichmentConfig
from lorekeeper.errors import PipelineConfigurationError
from lorekeeper.executors.context import RetrievedContext
from lorekeeper.models.base import Entity, Relationship
from lorekeeper.models.ontology import Vocabulary
from lorekeeper.models.triage import ContentAnalysisItem, Phase
from lorekeeper.ports import CompletionProvider, EntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineInput:
    """Everything an agent may read during one run.

    ``entities`` and ``relationships`` are optional preloads; when they
    are empty, agents look up what they need in their own store.
    """

    campaign_id: int
    content: str
    job_id: int = 0
    entities: tuple[Entity, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    context: RetrievedContext | None = None
    prior_results: tuple[ContentAnalysisItem, ...] = ()


@runtime_checkable
class PipelineAgent(Protocol):
    """A unit of analysis run by the pipeline."""

    name: str
    depends_on: Sequence[str]

    async def run(
        self,
        provider: CompletionProvider,
        input: PipelineInput,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[ContentAnalysisItem]: ...


@dataclass
class Stage:
    """A named group of agents sharing a phase label.

    The phase names the stage in logs; each item keeps the phase its
    agent gave it.
    """

    name: str
    phase: Phase = Phase.ENRICHMENT
    agents: list[PipelineAgent] = field(default_factory=list)


class Pipeline:
    """Runs stages in order and collects their triage items.

    Args:
        stages: Stages in execution order.

    Raises:
        PipelineConfigurationError: if the stages fail ``validate_stages``.
    """

    def __init__(self, stages: Sequence[Stage]) -> None:
        validate_stages(stages)
        self._stages = list(stages)

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    async def run(
        self,
        provider: CompletionProvider,
        input: PipelineInput,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[ContentAnalysisItem]:
        """Run every stage and return all items, numbered in emission order."""
        all_items: list[ContentAnalysisItem] = []

        for stage in self._stages:
            stage_input = dataclasses.replace(input, prior_results=tuple(all_items))
            ordered, skipped = topological_sort(stage.agents)
            for name in skipped:
                logger.warning(
                    "Skipping agent %r in stage %r: circular dependency.",
                    name, stage.name,
                )

            for agent in ordered:
                if cancel is not None and cancel.is_set():
                    logger.info(
                        "Pipeline cancelled before agent %r in stage %r.",
                        agent.name, stage.name,
                    )
                    break
                try:
                    items = await agent.run(provider, stage_input, cancel=cancel)
                    tagged = [_tag(item, agent.name) for item in items]
                except Exception:
                    logger.warning(
                        "Agent %r in stage %r failed; its items are omitted.",
                        agent.name, stage.name, exc_info=True,
                    )
                    continue

                all_items.extend(tagged)
                logger.info(
                    "Agent %r in stage %r (%s) produced %d items.",
                    agent.name, stage.name, stage.phase.value, len(tagged),
                )

        return [
            item.model_copy(update={"position": i})
            for i, item in enumerate(all_items)
        ]

    def __repr__(self) -> str:
        total = sum(len(s.agents) for s in self._stages)
        return f"Pipeline({len(self._stages)} stages, {total} agents)"


def _tag(item: ContentAnalysisItem, agent_name: str) -> ContentAnalysisItem:
    if not isinstance(item, ContentAnalysisItem):
        raise TypeError(f"agent {agent_name!r} returned {type(item).__name__}, not an item")
    return item.model_copy(update={"agent_name": agent_name})


# =====================================================================
# Dependency ordering
# =====================================================================

_UNVISITED, _VISITING, _VISITED = 0, 1, 2


def topological_sort(
    agents: Sequence[PipelineAgent],
) -> tuple[list[PipelineAgent], list[str]]:
    """Order *agents* so each runs after the agents it depends on.

    Dependency names that match no agent are treated as satisfied.
    Agents on a cycle, and agents depending on one, are left out of the
    order and their names returned in input order.

    Returns:
        ``(sorted_agents, skipped_names)``.
    """
    by_name = {a.name: a for a in agents}
    state = {a.name: _UNVISITED for a in agents}
    cyclic: set[str] = set()
    order: list[PipelineAgent] = []

    def visit(name: str) -> bool:
        current = state.get(name, _UNVISITED)
        if current == _VISITED:
            return True
        if current == _VISITING:
            return False

        agent = by_name.get(name)
        if agent is None:
            state[name] = _VISITED
            return True

        state[name] = _VISITING
        for dep in agent.depends_on:
            if not visit(dep):
                cyclic.add(name)
                return False
        state[name] = _VISITED
        order.append(agent)
        return True

    for agent in agents:
        if state[agent.name] != _UNVISITED:
            continue
        if not visit(agent.name):
            cyclic.add(agent.name)
            for name, s in state.items():
                if s == _VISITING:
                    cyclic.add(name)
                    state[name] = _UNVISITED

    skipped = [a.name for a in agents if a.name in cyclic]
    ordered = [a for a in order if a.name not in cyclic]
    return ordered, skipped


def validate_stages(stages: Sequence[Stage]) -> None:
    """Check a stage list at startup.

    Raises:
        PipelineConfigurationError: if a stage holds two agents with the
            same name, or an agent depends on a name that is not an
            agent of the same or an earlier stage.
    """
    known: set[str] = set()
    for stage in stages:
        names = [a.name for a in stage.agents]
        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise PipelineConfigurationError(
                    f"stage {stage.name!r} has duplicate agent name {name!r}"
                )
            seen.add(name)

        available = known | seen
        for agent in stage.agents:
            for dep in agent.depends_on:
                if dep not in available:
                    raise PipelineConfigurationError(
                        f"agent {agent.name!r} in stage {stage.name!r} depends on "
                        f"unknown agent {dep!r}"
                    )
        known |= seen


# =====================================================================
# Default assembly
# =====================================================================

def build_default_pipeline(
    store: EntityStore,
    *,
    vocabulary: Vocabulary | None = None,
    config: EnrichmentConfig | None = None,
) -> Pipeline:
    """Assemble the standard pipeline: one enrichment stage.

    Called once at process start; the stage list is validated on
    construction.
    """
    return Pipeline([
        Stage(
            "enrichment",
            Phase.ENRICHMENT,
            [EnrichmentAgent(store, vocabulary=vocabulary, config=config)],
        ),
    ])
