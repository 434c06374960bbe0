"""Tests for storycraft.prompts."""

from datetime import date

import pytest

from storycraft.models import QualityCheckResult, StoryOutline, StoryState, UserProfile
from storycraft.pipeline import create_initial_state
from storycraft.prompts import (
    PromptError,
    build_episode_prompt,
    build_outline_prompt,
    build_quality_check_prompt,
    build_refine_prompt,
    build_state_update_prompt,
    calc_age,
    is_child_mode,
    length_target,
    render_prompt,
)
from tests.stubs import make_traits, outline_dict, state_dict


def _birth_year(age: int) -> int:
    return date.today().year - age


@pytest.fixture
def outline() -> StoryOutline:
    return StoryOutline.model_validate(outline_dict())


class TestRenderPrompt:
    def test_substitutes_without_escaping(self) -> None:
        assert render_prompt("<{{{x}}}>", {"x": "a & b"}) == "<a & b>"

    def test_conditional(self) -> None:
        tpl = "{{#if flag}}yes{{else}}no{{/if}}"
        assert render_prompt(tpl, {"flag": True}) == "yes"
        assert render_prompt(tpl, {"flag": False}) == "no"

    def test_missing_partial_raises_prompt_error(self) -> None:
        with pytest.raises(PromptError):
            render_prompt("{{> missing_partial}}", {})


class TestChildMode:
    def test_calc_age(self) -> None:
        assert calc_age(2010, current_year=2025) == 15
        assert calc_age(None) is None

    @pytest.mark.parametrize("age, expected", [(10, True), (15, True), (16, False)])
    def test_age_boundary(self, age: int, expected: bool) -> None:
        assert is_child_mode(_birth_year(age)) is expected

    def test_unknown_age_is_adult(self) -> None:
        assert is_child_mode(None) is False

    def test_length_target(self) -> None:
        assert length_target(True) == "500〜800"
        assert length_target(False) == "800〜1,500"


class TestOutlinePrompt:
    def test_contains_genre_and_traits(self) -> None:
        prompt = build_outline_prompt(make_traits(25), "growth", theme="再出発")
        assert "## ジャンル: 成長物語" in prompt
        assert "## テーマ: 再出発" in prompt
        assert "特徴0" in prompt
        assert "全3話" in prompt

    def test_nickname_fixes_protagonist_name(self) -> None:
        prompt = build_outline_prompt(make_traits(25), "growth", nickname="Aoi")
        assert "主人公の名前は必ず「Aoi」にすること" in prompt
        assert '"name": "Aoi"' in prompt

    def test_without_nickname(self) -> None:
        prompt = build_outline_prompt(make_traits(25), "romance")
        assert "2〜3文字の自然な名前" in prompt
        assert "## テーマ" not in prompt

    def test_profile_lines(self) -> None:
        profile = UserProfile(gender="女性", birth_year=_birth_year(30), occupation="看護師")
        prompt = build_outline_prompt(make_traits(25), "mystery", profile=profile)
        assert "- 性別: 女性" in prompt
        assert "- 年齢: 30歳" in prompt
        assert "- 職業: 看護師" in prompt
        assert "子ども向けルール" not in prompt

    def test_child_profile_adds_child_rules(self) -> None:
        profile = UserProfile(birth_year=_birth_year(12))
        prompt = build_outline_prompt(make_traits(25), "fantasy", profile=profile)
        assert "子ども向けルール" in prompt

    def test_unknown_genre(self) -> None:
        with pytest.raises(ValueError, match="Unknown genre"):
            build_outline_prompt(make_traits(25), "western")


class TestEpisodePrompt:
    def test_first_episode(self, outline: StoryOutline) -> None:
        prompt = build_episode_prompt(outline, 1, create_initial_state(outline))
        assert "第1話「タイトル1」" in prompt
        assert "引き: 引き1" in prompt
        assert "前話の終わり" not in prompt
        assert "800〜1,500文字" in prompt
        assert "クリフハンガーで終えること" in prompt

    def test_upcoming_episodes_listed(self, outline: StoryOutline) -> None:
        prompt = build_episode_prompt(outline, 1, create_initial_state(outline))
        assert "- 第2話: rising action。山場2" in prompt
        assert "- 第3話: resolution。山場3" in prompt

    def test_previous_tail_and_state(self, outline: StoryOutline) -> None:
        state = StoryState.model_validate(state_dict())
        prompt = build_episode_prompt(outline, 2, state, previous_tail="通知音が鳴った。")
        assert "「通知音が鳴った。」" in prompt
        assert '"emotionalState": "期待"' in prompt
        assert "ミナト" in prompt

    def test_last_episode(self, outline: StoryOutline) -> None:
        state = StoryState.model_validate(state_dict())
        prompt = build_episode_prompt(outline, 3, state, previous_tail="tail")
        assert "この話は最終話" in prompt
        assert "クリフハンガーで終えること" not in prompt
        assert "引き: 引き3" not in prompt
        assert "この後に控える展開" not in prompt

    def test_child_mode(self, outline: StoryOutline) -> None:
        prompt = build_episode_prompt(
            outline, 1, create_initial_state(outline), child_mode=True,
        )
        assert "子ども向けルール" in prompt
        assert "文字数: 500〜800文字" in prompt

    def test_asks_for_title_and_body(self, outline: StoryOutline) -> None:
        prompt = build_episode_prompt(outline, 1, create_initial_state(outline))
        assert '"title":' in prompt
        assert '"body":' in prompt


class TestQualityAndRefinePrompts:
    def test_quality_check_hook_wording(self) -> None:
        assert "続きを読みたくなるか" in build_quality_check_prompt("本文")
        last = build_quality_check_prompt("本文", is_last=True)
        assert "最終話としての余韻" in last
        assert "続きを読みたくなるか" not in last

    def test_quality_check_child_note(self) -> None:
        assert "15歳以下" in build_quality_check_prompt("本文", child_mode=True)
        assert "15歳以下" not in build_quality_check_prompt("本文")

    def test_refine_prompt(self) -> None:
        quality = QualityCheckResult(
            average_score=2.0, weaknesses=["段落が長い"], suggestions=["分ける"],
        )
        prompt = build_refine_prompt("あ" * 1000, quality)
        assert "  - 段落が長い" in prompt
        assert "  - 分ける" in prompt
        assert "約900〜1100文字" in prompt
        assert "プレーンテキスト" in prompt

    def test_refine_prompt_without_feedback(self) -> None:
        prompt = build_refine_prompt("本文", QualityCheckResult(average_score=2.0))
        assert "特になし" in prompt


def test_state_update_prompt():
    state = StoryState.model_validate(state_dict())
    prompt = build_state_update_prompt(state, "本文です。", 2, max_delta=20)
    assert "第2話の本文" in prompt
    assert "±20" in prompt
    assert "introducedIn は 2" in prompt
    assert '"trust": 60' in prompt
    assert "本文です。" in prompt
