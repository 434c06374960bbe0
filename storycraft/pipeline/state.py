"""Story-state initialiser and updater.

The state is replaced wholesale after every episode with the service's
output. Only structural invariants are enforced on the replacement; fields
the service omits take their empty defaults rather than being carried over
from the previous state.
"""

from __future__ import annotations

import logging

from storycraft.config import PipelineSettings
from storycraft.llm import LLM, GenerationOptions, ModelTier
from storycraft.models import (
    ProtagonistState,
    StoryOutline,
    StoryState,
    WorldSettings,
)
from storycraft.parsing import parse_model
from storycraft.prompts import build_state_update_prompt

logger = logging.getLogger(__name__)

INITIAL_EMOTIONAL_STATE = "日常"
INITIAL_GROWTH = "物語の始まり"
INITIAL_WORLD = WorldSettings(time="現在", location="日常", season="秋")


def create_initial_state(outline: StoryOutline) -> StoryState:
    """Neutral state for episode 1. Never fails."""
    return StoryState(
        protagonist=ProtagonistState(
            name=outline.protagonist_sheet.name,
            emotional_state=INITIAL_EMOTIONAL_STATE,
            personal_growth=INITIAL_GROWTH,
        ),
        world_settings=INITIAL_WORLD.model_copy(),
    )


def enforce_invariants(
    previous: StoryState, updated: StoryState, max_delta: int = 20
) -> StoryState:
    """Apply the invariants the service is told about but may not honour.

    - trust/affection of a known character move at most max_delta per episode
      (the 0..100 clamp happens earlier, in the Relationship validator)
    - a thread id present in resolved is dropped from active
    """
    known = previous.protagonist.relationships
    relationships = {}
    for name, rel in updated.protagonist.relationships.items():
        before = known.get(name)
        if before is not None:
            trust = _limit(before.trust, rel.trust, max_delta)
            affection = _limit(before.affection, rel.affection, max_delta)
            if (trust, affection) != (rel.trust, rel.affection):
                logger.warning("Relationship change for %r exceeded ±%d; clamped", name, max_delta)
                rel = rel.model_copy(update={"trust": trust, "affection": affection})
        relationships[name] = rel

    resolved_ids = {t.id for t in updated.plot_threads.resolved}
    active = [t for t in updated.plot_threads.active if t.id not in resolved_ids]
    if len(active) != len(updated.plot_threads.active):
        logger.warning("Dropped %d resolved thread(s) still listed as active",
                       len(updated.plot_threads.active) - len(active))

    return updated.model_copy(update={
        "protagonist": updated.protagonist.model_copy(update={"relationships": relationships}),
        "plot_threads": updated.plot_threads.model_copy(update={"active": active}),
    })


def _limit(before: int, after: int, max_delta: int) -> int:
    return max(before - max_delta, min(before + max_delta, after))


async def update_state(
    llm: LLM,
    state: StoryState,
    body: str,
    episode_number: int,
    settings: PipelineSettings | None = None,
) -> StoryState:
    """Ask the service for a full replacement state. No retry: parse failures propagate."""
    settings = settings or PipelineSettings()
    prompt = build_state_update_prompt(
        state, body, episode_number, max_delta=settings.max_relationship_delta,
    )
    options = GenerationOptions(
        temperature=settings.state_temperature,
        structured_output=True,
        tier=ModelTier.FAST,
    )
    text = await llm("state_update", prompt, options)
    updated = parse_model(text, StoryState)
    return enforce_invariants(state, updated, settings.max_relationship_delta)
