"""Tests for storycraft.models."""

import pytest
from pydantic import ValidationError

from storycraft.models import (
    GENRES,
    QualityCheckResult,
    Relationship,
    StoryEpisode,
    StoryOutline,
    StoryState,
    Trait,
)
from storycraft.parsing import MalformedOutputError, parse_model
from tests.stubs import outline_dict, quality_json, state_dict, state_json


class TestTrait:
    def test_camel_case_input(self) -> None:
        t = Trait.model_validate({
            "label": "几帳面", "category": "personality",
            "intensityLabel": "とても", "description": "d", "keywords": ["k"],
        })
        assert t.intensity_label == "とても"

    def test_snake_case_input(self) -> None:
        t = Trait(label="x", category="hobby", intensity_label="かなり")
        assert t.intensity_label == "かなり"

    def test_defaults(self) -> None:
        t = Trait(label="x")
        assert t.category == "other"
        assert t.keywords == []
        assert t.intensity_label is None

    def test_invalid_category_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Trait(label="x", category="gossip")


class TestStoryOutline:
    def test_parses_wire_shape(self) -> None:
        outline = StoryOutline.model_validate(outline_dict())
        assert outline.series_title == "夜のカウンター"
        assert outline.protagonist_sheet.name == "アオイ"
        assert [e.number for e in outline.episodes] == [1, 2, 3]
        assert outline.episodes[0].dramatic_function == "introduction"

    def test_frozen(self) -> None:
        outline = StoryOutline.model_validate(outline_dict())
        with pytest.raises(ValidationError):
            outline.series_title = "changed"

    def test_dump_uses_camel_case(self) -> None:
        dumped = StoryOutline.model_validate(outline_dict()).model_dump(by_alias=True)
        assert "seriesTitle" in dumped
        assert "protagonistSheet" in dumped
        assert "plotThreadsIntroduced" in dumped["episodes"][0]


class TestStoryState:
    def test_parses_wire_shape(self) -> None:
        state = StoryState.model_validate(state_dict())
        assert state.protagonist.relationships["ミナト"].trust == 60
        assert state.plot_threads.active[0].introduced_in == 1
        assert state.world_settings.season == "秋"

    def test_optional_sections_default_empty(self) -> None:
        state = StoryState.model_validate({"protagonist": {"name": "アオイ"}})
        assert state.protagonist.relationships == {}
        assert state.plot_threads.active == []
        assert state.world_settings.location == ""

    def test_protagonist_required(self) -> None:
        with pytest.raises(ValidationError):
            StoryState.model_validate({"plotThreads": {"active": [], "resolved": []}})


class TestRelationship:
    def test_values_clamped(self) -> None:
        rel = Relationship(role="friend", trust=140, affection=-5)
        assert rel.trust == 100
        assert rel.affection == 0

    def test_float_rounded(self) -> None:
        assert Relationship(trust=61.6).trust == 62

    def test_garbage_falls_back_to_neutral(self) -> None:
        assert Relationship(trust="high").trust == 50

    def test_infinity_falls_back_to_neutral(self) -> None:
        text = state_json().replace('"trust": 60', '"trust": Infinity')
        state = parse_model(text, StoryState)
        assert state.protagonist.relationships["ミナト"].trust == 50


class TestQualityCheckResult:
    def test_scores_clamped(self) -> None:
        result = QualityCheckResult.model_validate({
            "scores": {
                "readability": 7, "pacing": 0, "characterAppeal": 3,
                "emotionalImpact": 3, "hookStrength": 3,
            },
        })
        assert result.scores.readability == 5.0
        assert result.scores.pacing == 1.0

    def test_mean(self) -> None:
        result = QualityCheckResult.model_validate({
            "scores": {
                "readability": 4, "pacing": 3, "characterAppeal": 4,
                "emotionalImpact": 4, "hookStrength": 3,
            },
        })
        assert result.scores.mean() == 3.6

    def test_null_score_rejected(self) -> None:
        text = quality_json(4.0).replace('"readability": 4.0', '"readability": null')
        with pytest.raises(MalformedOutputError):
            parse_model(text, QualityCheckResult)

    def test_scores_optional(self) -> None:
        result = QualityCheckResult.model_validate({"averageScore": 2.5})
        assert result.scores is None
        assert result.average_score == 2.5


class TestStoryEpisode:
    def test_episode_number_range(self) -> None:
        with pytest.raises(ValidationError):
            StoryEpisode(episode_number=4, title="t", body="b")

    def test_generated_at_is_set(self) -> None:
        ep = StoryEpisode(episode_number=1, title="t", body="b")
        assert ep.generated_at.tzinfo is not None


def test_genres_cover_all_ids():
    assert set(GENRES) == {"growth", "romance", "fantasy", "sci-fi", "mystery"}
    assert GENRES["growth"].label == "成長物語"
