"""Pipeline and LLM connection settings.

Values come from the environment (a .env file at the project root is loaded
first). Every tunable has a default, so an empty environment gives the
production behaviour.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel

from storycraft.llm import HttpLLM, ProviderFormat

load_dotenv(Path(__file__).parent.parent / ".env")


class PipelineSettings(BaseModel):
    """Knobs for the generation pipeline.

    quality_threshold and max_refine_iterations encode a product-level
    quality/latency trade-off; the rest are sampling parameters per stage.
    """

    quality_threshold: float = 3.5
    max_refine_iterations: int = 2

    outline_attempts: int = 3
    outline_temperature: float = 0.8
    outline_retry_temperature: float = 0.6
    outline_max_tokens: int = 16384

    draft_attempts: int = 3
    draft_temperature: float = 0.95
    draft_retry_temperature: float = 0.85
    draft_top_p: float = 0.90
    draft_top_k: int = 30
    draft_max_tokens: int = 8192

    quality_temperature: float = 0.2
    refine_temperature: float = 0.85
    refine_max_tokens: int = 8192
    state_temperature: float = 0.3

    min_response_chars: int = 10
    previous_tail_chars: int = 300
    child_age_limit: int = 15
    max_relationship_delta: int = 20
    min_traits: int = 20

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Override defaults from STORY_<FIELD> environment variables."""
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            value = os.getenv(f"STORY_{name.upper()}")
            if value is not None and value.strip():
                overrides[name] = value.strip()
        return cls.model_validate(overrides)


class LLMSettings(BaseModel):
    provider_url: str = "https://generativelanguage.googleapis.com"
    api_key: str = ""
    provider_format: ProviderFormat = "gemini"
    fast_model: str = "gemini-2.5-flash"
    strong_model: str = "gemini-2.5-pro"
    timeout: float = 120.0

    @classmethod
    def from_env(cls) -> "LLMSettings":
        """Override defaults from STORY_LLM_<FIELD> environment variables."""
        overrides: dict[str, Any] = {}
        for name in cls.model_fields:
            value = os.getenv(f"STORY_LLM_{name.upper()}")
            if value is not None and value.strip():
                overrides[name] = value.strip()
        return cls.model_validate(overrides)

    def build_client(self) -> HttpLLM:
        return HttpLLM(
            provider_url=self.provider_url,
            api_key=self.api_key,
            provider_format=self.provider_format,
            fast_model=self.fast_model,
            strong_model=self.strong_model,
            timeout=self.timeout,
        )
