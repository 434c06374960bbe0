"""Bounded retry for structured generation stages.

Outline and draft generation re-request a fresh response when the service
errors, returns (nearly) nothing, or returns something the extractor cannot
turn into the expected structure. Attempts after the first run with a
lower-creativity option set.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from storycraft.llm import LLM, GenerationOptions, LLMError
from storycraft.parsing import MalformedOutputError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationFailure(RuntimeError):
    """Terminal pipeline failure. The caller should offer the user a retry."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class EmptyResponseError(LLMError):
    """The service answered, but with too little text to be a real response."""


async def generate_with_retries(
    llm: LLM,
    stage: str,
    prompt: str,
    options_for_attempt: Callable[[int], GenerationOptions],
    parse: Callable[[str], T],
    attempts: int,
    min_chars: int = 10,
) -> T:
    """Call the service until parse() accepts a response or attempts run out.

    Raises GenerationFailure chained to the last underlying error.
    """
    last_error: Exception | None = None
    for attempt in range(attempts):
        options = options_for_attempt(attempt)
        try:
            text = (await llm(stage, prompt, options)).strip()
            logger.debug("%s attempt %d: response length=%d", stage, attempt + 1, len(text))
            if len(text) < min_chars:
                raise EmptyResponseError(f"Empty or too short response (length={len(text)})")
            return parse(text)
        except (LLMError, MalformedOutputError) as e:
            last_error = e
            logger.warning("%s attempt %d/%d failed: %s", stage, attempt + 1, attempts, e)

    raise GenerationFailure(
        stage, f"failed after {attempts} attempt(s)"
    ) from last_error
