"""Episode generation — draft, quality gate, refinement, state update.

Episode flow (strictly sequential, one story at a time per caller):
  1. Draft: episode prompt → structured {title, body}, retried on parse failure.
  2. Quality check on the draft body.
  3. If the average score is below the threshold, refine up to
     max_refine_iterations times. Iteration 0 runs on the fast tier, later
     iterations on the strong tier. Each refinement is re-scored; the loop
     stops as soon as a re-check clears the threshold.
  4. State update from the prior state and the final body.

Refinement never blocks delivery: if the threshold is never met, the
best-scoring body is returned anyway.
"""

from __future__ import annotations

import logging
import re

from storycraft.config import PipelineSettings
from storycraft.llm import LLM, GenerationOptions, LLMError, ModelTier
from storycraft.models import (
    TOTAL_EPISODES,
    EpisodeDraft,
    EpisodeResult,
    QualityCheckResult,
    StoryEpisode,
    StoryOutline,
    StoryState,
)
from storycraft.parsing import MalformedOutputError, parse_model
from storycraft.prompts import (
    build_episode_prompt,
    build_refine_prompt,
    is_child_mode,
)

from .quality import check_quality
from .retry import GenerationFailure, generate_with_retries
from .state import update_state

logger = logging.getLogger(__name__)

_EPISODE_PREFIX = re.compile(
    r"^\s*(?:第\s*[0-9０-９一二三四五六七八九十]+\s*話|(?:episode|ep\.?)\s*[0-9０-９]+)"
    r"[\s:：.．\-－―]*",
    re.IGNORECASE,
)
_QUOTE_PAIRS = [("「", "」"), ("『", "』"), ('"', '"'), ("“", "”")]


def clean_title(title: str) -> str:
    """Strip an episode-number prefix and wrapping quotes from a generated title."""
    cleaned = _EPISODE_PREFIX.sub("", title.strip()).strip()
    for open_q, close_q in _QUOTE_PAIRS:
        if len(cleaned) > 2 and cleaned.startswith(open_q) and cleaned.endswith(close_q):
            cleaned = cleaned[1:-1].strip()
            break
    return cleaned


def refine_tier(iteration: int) -> ModelTier:
    """Try the cheap tier first; escalate to the strong tier on later iterations."""
    return ModelTier.FAST if iteration == 0 else ModelTier.STRONG


def _parse_draft(text: str) -> EpisodeDraft:
    draft = parse_model(text, EpisodeDraft)
    if not draft.body.strip():
        raise MalformedOutputError("Draft body is empty")
    return draft


async def draft_episode(
    llm: LLM,
    outline: StoryOutline,
    episode_number: int,
    state: StoryState,
    previous_tail: str | None,
    child_mode: bool,
    settings: PipelineSettings,
) -> EpisodeDraft:
    prompt = build_episode_prompt(outline, episode_number, state, previous_tail, child_mode)

    def options(attempt: int) -> GenerationOptions:
        return GenerationOptions(
            temperature=settings.draft_temperature if attempt == 0
            else settings.draft_retry_temperature,
            top_p=settings.draft_top_p,
            top_k=settings.draft_top_k,
            max_output_tokens=settings.draft_max_tokens,
            structured_output=True,
            tier=ModelTier.FAST,
        )

    return await generate_with_retries(
        llm, "draft", prompt, options, _parse_draft,
        attempts=settings.draft_attempts,
        min_chars=settings.min_response_chars,
    )


async def refine_until_threshold(
    llm: LLM,
    body: str,
    quality: QualityCheckResult,
    is_last: bool,
    child_mode: bool,
    settings: PipelineSettings,
) -> tuple[str, QualityCheckResult, int]:
    """Run the bounded refinement loop.

    Returns (best body, its quality result, refinement calls made).
    """
    best_body, best_quality = body, quality
    current_body, current_quality = body, quality
    iterations = 0

    for i in range(settings.max_refine_iterations):
        tier = refine_tier(i)
        prompt = build_refine_prompt(current_body, current_quality, child_mode)
        options = GenerationOptions(
            temperature=settings.refine_temperature,
            max_output_tokens=settings.refine_max_tokens,
            tier=tier,
        )
        iterations += 1
        try:
            refined = (await llm("refine", prompt, options)).strip()
        except LLMError as e:
            logger.warning("Refinement %d (%s) failed: %s; keeping best body",
                           i + 1, tier.value, e)
            break
        if not refined:
            logger.warning("Refinement %d (%s) returned nothing; keeping best body",
                           i + 1, tier.value)
            break

        current_body = refined
        current_quality = await check_quality(
            llm, current_body, is_last=is_last, child_mode=child_mode, settings=settings,
        )
        logger.info("Refinement %d (%s): average=%.2f",
                    i + 1, tier.value, current_quality.average_score)

        if current_quality.average_score >= best_quality.average_score:
            best_body, best_quality = current_body, current_quality
        if current_quality.average_score >= settings.quality_threshold:
            return best_body, best_quality, iterations

    logger.warning(
        "Quality threshold %.1f not reached after %d refinement(s) (best %.2f); delivering anyway",
        settings.quality_threshold, iterations, best_quality.average_score,
    )
    return best_body, best_quality, iterations


async def generate_episode(
    llm: LLM,
    outline: StoryOutline,
    episode_number: int,
    state: StoryState,
    previous_tail: str | None = None,
    birth_year: int | None = None,
    settings: PipelineSettings | None = None,
) -> EpisodeResult:
    """Produce one finished episode and the state that follows it.

    Raises GenerationFailure if the draft stage exhausts its attempts or the
    quality-check / state-update output cannot be parsed.
    """
    settings = settings or PipelineSettings()
    if not 1 <= episode_number <= TOTAL_EPISODES:
        raise ValueError(f"episode_number must be 1..{TOTAL_EPISODES}, got {episode_number}")

    child_mode = is_child_mode(birth_year, settings.child_age_limit)
    is_last = episode_number == TOTAL_EPISODES
    logger.info("Generating episode %d (child_mode=%s)", episode_number, child_mode)

    draft = await draft_episode(
        llm, outline, episode_number, state, previous_tail, child_mode, settings,
    )
    body = draft.body.strip()

    try:
        quality = await check_quality(
            llm, body, is_last=is_last, child_mode=child_mode, settings=settings,
        )
        if quality.average_score < settings.quality_threshold:
            body, quality, _ = await refine_until_threshold(
                llm, body, quality, is_last, child_mode, settings,
            )
    except (LLMError, MalformedOutputError) as e:
        raise GenerationFailure("quality_check", str(e)) from e

    try:
        updated_state = await update_state(llm, state, body, episode_number, settings)
    except (LLMError, MalformedOutputError) as e:
        raise GenerationFailure("state_update", str(e)) from e

    title = clean_title(draft.title) or outline.episodes[episode_number - 1].title
    episode = StoryEpisode(episode_number=episode_number, title=title, body=body)
    logger.info("Episode %d ready: %r (%d chars, average=%.2f)",
                episode_number, title, len(body), quality.average_score)
    return EpisodeResult(episode=episode, updated_state=updated_state)
