"""Outline stage — plans the whole three-episode series from trait data."""

from __future__ import annotations

import logging

from storycraft.config import PipelineSettings
from storycraft.llm import LLM, GenerationOptions, ModelTier
from storycraft.models import TOTAL_EPISODES, StoryOutline, Trait, UserProfile
from storycraft.parsing import MalformedOutputError, parse_model
from storycraft.prompts import build_outline_prompt

from .retry import generate_with_retries

logger = logging.getLogger(__name__)


def validate_outline(outline: StoryOutline, nickname: str | None = None) -> StoryOutline:
    """Enforce the series shape: 3 episodes numbered 1..3, cliffhangers on 1 and 2 only.

    Raises MalformedOutputError for shapes that can't be normalised, so the
    outline stage requests a fresh generation.
    """
    if len(outline.episodes) != TOTAL_EPISODES:
        raise MalformedOutputError(
            f"Outline must have {TOTAL_EPISODES} episodes, got {len(outline.episodes)}"
        )

    episodes = sorted(outline.episodes, key=lambda e: e.number)
    normalised = []
    for i, plan in enumerate(episodes, start=1):
        is_last = i == TOTAL_EPISODES
        cliffhanger = (plan.cliffhanger or "").strip()
        if not is_last and not cliffhanger:
            raise MalformedOutputError(f"Episode {i} is missing its cliffhanger")
        normalised.append(plan.model_copy(update={
            "number": i,
            "cliffhanger": None if is_last else cliffhanger,
        }))

    update: dict = {"episodes": normalised}
    if nickname:
        update["protagonist_sheet"] = outline.protagonist_sheet.model_copy(
            update={"name": nickname}
        )
    return outline.model_copy(update=update)


async def generate_outline(
    llm: LLM,
    traits: list[Trait],
    genre: str,
    theme: str | None = None,
    profile: UserProfile | None = None,
    nickname: str | None = None,
    settings: PipelineSettings | None = None,
) -> StoryOutline:
    """Generate the series outline. Raises GenerationFailure after the last attempt."""
    settings = settings or PipelineSettings()
    prompt = build_outline_prompt(
        traits, genre, theme, profile, nickname,
        child_age_limit=settings.child_age_limit,
    )

    def options(attempt: int) -> GenerationOptions:
        return GenerationOptions(
            temperature=settings.outline_temperature if attempt == 0
            else settings.outline_retry_temperature,
            max_output_tokens=settings.outline_max_tokens,
            structured_output=True,
            tier=ModelTier.STRONG,
        )

    def parse(text: str) -> StoryOutline:
        return validate_outline(parse_model(text, StoryOutline), nickname)

    logger.info("Generating outline genre=%s traits=%d", genre, len(traits))
    outline = await generate_with_retries(
        llm, "outline", prompt, options, parse,
        attempts=settings.outline_attempts,
        min_chars=settings.min_response_chars,
    )
    logger.info("Outline ready: %r", outline.series_title)
    return outline
