"""Tests for the outline stage."""

import pytest

from storycraft.llm import LLMError, ModelTier
from storycraft.models import StoryOutline
from storycraft.parsing import MalformedOutputError
from storycraft.pipeline import GenerationFailure, generate_outline, validate_outline
from tests.stubs import StubLLM, make_traits, outline_dict, outline_json


class TestValidateOutline:
    def test_renumbers_sorted_episodes(self) -> None:
        data = outline_dict()
        data["episodes"].reverse()
        outline = validate_outline(StoryOutline.model_validate(data))
        assert [e.title for e in outline.episodes] == ["タイトル1", "タイトル2", "タイトル3"]
        assert [e.number for e in outline.episodes] == [1, 2, 3]

    def test_final_cliffhanger_dropped(self) -> None:
        outline = validate_outline(StoryOutline.model_validate(outline_dict()))
        assert outline.episodes[0].cliffhanger == "引き1"
        assert outline.episodes[2].cliffhanger is None

    def test_missing_cliffhanger_rejected(self) -> None:
        data = outline_dict()
        data["episodes"][1]["cliffhanger"] = " "
        with pytest.raises(MalformedOutputError, match="Episode 2"):
            validate_outline(StoryOutline.model_validate(data))

    def test_wrong_episode_count_rejected(self) -> None:
        with pytest.raises(MalformedOutputError, match="3 episodes"):
            validate_outline(StoryOutline.model_validate(outline_dict(episodes=2)))

    def test_nickname_forced(self) -> None:
        outline = validate_outline(
            StoryOutline.model_validate(outline_dict(name="ハルト")), nickname="Aoi",
        )
        assert outline.protagonist_sheet.name == "Aoi"
        assert outline.protagonist_sheet.personality == "慎重"


class TestGenerateOutline:
    async def test_success(self) -> None:
        llm = StubLLM({"outline": outline_json()})
        outline = await generate_outline(llm, make_traits(25), "growth")
        assert outline.series_title == "夜のカウンター"
        assert len(llm.calls) == 1

    async def test_uses_strong_tier_structured(self) -> None:
        llm = StubLLM({"outline": outline_json()})
        await generate_outline(llm, make_traits(25), "growth")
        options = llm.calls[0].options
        assert options.tier is ModelTier.STRONG
        assert options.structured_output is True
        assert options.temperature == 0.8
        assert options.max_output_tokens == 16384

    async def test_retries_with_lower_temperature(self) -> None:
        llm = StubLLM({"outline": ["not json at all", outline_json()]})
        outline = await generate_outline(llm, make_traits(25), "growth")
        assert outline.protagonist_sheet.name == "アオイ"
        assert [c.options.temperature for c in llm.calls] == [0.8, 0.6]

    async def test_short_response_retried(self) -> None:
        llm = StubLLM({"outline": ["{}", outline_json()]})
        await generate_outline(llm, make_traits(25), "growth")
        assert len(llm.calls) == 2

    async def test_wrong_shape_retried(self) -> None:
        llm = StubLLM({"outline": [outline_json(episodes=2), outline_json()]})
        outline = await generate_outline(llm, make_traits(25), "growth")
        assert len(outline.episodes) == 3
        assert len(llm.calls) == 2

    async def test_llm_error_retried(self) -> None:
        llm = StubLLM({"outline": [LLMError("boom"), outline_json()]})
        await generate_outline(llm, make_traits(25), "growth")
        assert len(llm.calls) == 2

    async def test_exhaustion_raises_generation_failure(self) -> None:
        llm = StubLLM({"outline": "I'm sorry, I can't help with that."})
        with pytest.raises(GenerationFailure) as exc_info:
            await generate_outline(llm, make_traits(25), "growth")
        assert exc_info.value.stage == "outline"
        assert isinstance(exc_info.value.__cause__, MalformedOutputError)
        assert len(llm.calls) == 3

    async def test_nickname_in_prompt_and_result(self) -> None:
        llm = StubLLM({"outline": outline_json(name="ハルト")})
        outline = await generate_outline(llm, make_traits(25), "growth", nickname="Aoi")
        assert outline.protagonist_sheet.name == "Aoi"
        assert "「Aoi」" in llm.calls[0].prompt
