"""End-to-end scenario: a new reader's first episode through to the finale.

The LLM is scripted; everything else (prompts, extraction, validation,
state threading, persistence) runs for real.
"""

import re

from storycraft.models import UserProfile
from storycraft.pipeline import create_initial_state, generate_episode, generate_outline
from storycraft.stories import StoryService
from tests.stubs import StubLLM, episode_json, make_traits, outline_json, pipeline_llm, state_json

_EPISODE_MARKER = re.compile(r"(第\s*\d+\s*話|episode\s*\d+)", re.IGNORECASE)


async def test_first_episode_for_new_reader():
    llm = StubLLM({
        "outline": "了解しました。\n```json\n" + outline_json(name="ハルト") + "\n```",
        "draft": episode_json(title="Episode 1: はじまりの夜"),
        "quality_check": "{\"scores\": {\"readability\": 4, \"pacing\": 4, "
                         "\"characterAppeal\": 4, \"emotionalImpact\": 4, \"hookStrength\": 4},}",
        "state_update": state_json(name="Aoi"),
    })

    outline = await generate_outline(llm, make_traits(25), "growth", nickname="Aoi")
    assert outline.protagonist_sheet.name == "Aoi"

    initial = create_initial_state(outline)
    assert initial.protagonist.relationships == {}

    result = await generate_episode(llm, outline, 1, initial)
    assert 800 <= len(result.episode.body) <= 1500
    assert not _EPISODE_MARKER.search(result.episode.title)
    assert result.episode.title == "はじまりの夜"
    assert result.updated_state.protagonist.name == "Aoi"
    assert llm.stages == ["outline", "draft", "quality_check", "state_update"]


async def test_full_series_through_service(store):
    llm = pipeline_llm(
        outline=outline_json(name="ハルト"),
        draft=[
            episode_json(title="第1話 はじまり"),
            episode_json(title="第2話 すれ違い"),
            episode_json(title="第3話 また明日"),
        ],
    )
    service = StoryService(store, llm)
    profile = UserProfile(nickname="Aoi", birth_year=1990)

    story = await service.create_story("u1", make_traits(25), "growth", profile=profile)
    _, second = await service.continue_story("u1", story.id)
    final_story, third = await service.continue_story("u1", story.id)

    assert [e.title for e in final_story.episodes] == ["はじまり", "すれ違い", "また明日"]
    assert second.episode_number == 2
    assert third.episode_number == 3
    assert final_story.status == "completed"
    assert final_story.outline.protagonist_sheet.name == "Aoi"

    # each continuation hands the end of the previous body to the draft prompt
    draft_prompts = [c.prompt for c in llm.calls_for("draft")]
    assert "前話の終わり" not in draft_prompts[0]
    assert "前話の終わり" in draft_prompts[1]
    assert "この話は最終話" in draft_prompts[2]

    reloaded = store.get(story.id)
    assert reloaded == final_story
