"""Quality check stage — scores a draft on five dimensions.

Runs once per draft/refinement cycle with no retry layer: a parse failure
here is terminal for the episode.
"""

from __future__ import annotations

import logging

from storycraft.config import PipelineSettings
from storycraft.llm import LLM, GenerationOptions, ModelTier
from storycraft.models import QualityCheckResult
from storycraft.parsing import parse_model
from storycraft.prompts import build_quality_check_prompt

logger = logging.getLogger(__name__)


def normalise_quality(result: QualityCheckResult) -> QualityCheckResult:
    """Recompute average_score from the five scores when they are present."""
    if result.scores is None:
        return result
    return result.model_copy(update={"average_score": result.scores.mean()})


async def check_quality(
    llm: LLM,
    body: str,
    is_last: bool = False,
    child_mode: bool = False,
    settings: PipelineSettings | None = None,
) -> QualityCheckResult:
    settings = settings or PipelineSettings()
    prompt = build_quality_check_prompt(body, is_last=is_last, child_mode=child_mode)
    options = GenerationOptions(
        temperature=settings.quality_temperature,
        structured_output=True,
        tier=ModelTier.FAST,
    )
    text = await llm("quality_check", prompt, options)
    result = normalise_quality(parse_model(text, QualityCheckResult))
    logger.info("Quality check: average=%.2f weaknesses=%d",
                result.average_score, len(result.weaknesses))
    return result
