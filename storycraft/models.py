"""Core domain models.

All pipeline stages and the storage layer operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
Field names are snake_case in Python and camelCase on the wire, which is
the shape the generation service is asked to emit.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TraitCategory = Literal[
    "personality",
    "value",
    "skill",
    "experience",
    "work",
    "hobby",
    "interest",
    "lifestyle",
    "other",
]

GenreId = Literal["growth", "romance", "fantasy", "sci-fi", "mystery"]


class WireModel(BaseModel):
    """Base for every model that crosses the generation-service boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class Trait(WireModel):
    """A personality trait collected elsewhere in the app. Read-only here."""

    label: str
    category: TraitCategory = "other"
    intensity_label: str | None = None
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    id: str | None = None


class UserProfile(WireModel):
    gender: str | None = None
    birth_year: int | None = None
    occupation: str | None = None
    nickname: str | None = None
    display_name: str | None = None


class Genre(BaseModel):
    id: GenreId
    label: str
    description: str


GENRES: dict[str, Genre] = {
    "growth": Genre(
        id="growth", label="成長物語",
        description="日常を舞台に、あなたが一歩踏み出す物語",
    ),
    "romance": Genre(
        id="romance", label="ロマンス",
        description="不器用なあなたの恋と出会いの物語",
    ),
    "fantasy": Genre(
        id="fantasy", label="ファンタジー",
        description="異世界で冒険するあなたの英雄譚",
    ),
    "sci-fi": Genre(
        id="sci-fi", label="SF",
        description="未来の世界であなたが直面する選択の物語",
    ),
    "mystery": Genre(
        id="mystery", label="ミステリー",
        description="謎を解き明かすあなたの推理物語",
    ),
}


# ---------------------------------------------------------------------------
# Outline (created once, immutable thereafter)
# ---------------------------------------------------------------------------

class ProtagonistSheet(WireModel):
    name: str
    personality: str = ""
    motivation: str = ""
    flaw: str = ""
    arc: str = ""


class SupportingCharacter(WireModel):
    name: str
    role: str = ""
    personality: str = ""
    relationship: str = ""


class EpisodePlan(WireModel):
    number: int
    title: str
    summary: str = ""
    dramatic_function: str = ""
    key_scenes: list[str] = Field(default_factory=list)
    plot_threads_introduced: list[str] = Field(default_factory=list)
    plot_threads_resolved: list[str] = Field(default_factory=list)
    emotional_beat: str = ""
    cliffhanger: str | None = None


class StoryOutline(WireModel):
    model_config = ConfigDict(frozen=True)

    series_title: str
    protagonist_sheet: ProtagonistSheet
    supporting_characters: list[SupportingCharacter] = Field(default_factory=list)
    episodes: list[EpisodePlan]
    themes: list[str] = Field(default_factory=list)
    motifs: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# StoryState (threaded across episode calls, replaced wholesale)
# ---------------------------------------------------------------------------

def _clamp_percent(value: object) -> int:
    try:
        number = round(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        return 50
    return max(0, min(100, number))


class Relationship(WireModel):
    name: str | None = None
    role: str = ""
    trust: int = 50  # 0–100
    affection: int = 50  # 0–100

    @field_validator("trust", "affection", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> int:
        return _clamp_percent(value)


class ProtagonistState(WireModel):
    name: str
    emotional_state: str = ""
    relationships: dict[str, Relationship] = Field(default_factory=dict)
    knowledge_gained: list[str] = Field(default_factory=list)
    personal_growth: str = ""


class ActiveThread(WireModel):
    id: str
    description: str = ""
    introduced_in: int = 1


class ResolvedThread(WireModel):
    id: str
    resolution: str = ""
    resolved_in: int = 1


class PlotThreads(WireModel):
    active: list[ActiveThread] = Field(default_factory=list)
    resolved: list[ResolvedThread] = Field(default_factory=list)


class WorldSettings(WireModel):
    time: str = ""
    location: str = ""
    season: str = ""


class StoryState(WireModel):
    protagonist: ProtagonistState
    plot_threads: PlotThreads = Field(default_factory=PlotThreads)
    world_settings: WorldSettings = Field(default_factory=WorldSettings)


# ---------------------------------------------------------------------------
# Episode and quality check
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EpisodeDraft(WireModel):
    """Raw draft shape requested from the generation service."""

    title: str
    body: str


class StoryEpisode(WireModel):
    episode_number: int = Field(ge=1, le=3)
    title: str
    body: str
    generated_at: datetime = Field(default_factory=_utcnow)


class QualityScores(WireModel):
    readability: float
    pacing: float
    character_appeal: float
    emotional_impact: float
    hook_strength: float

    @field_validator("*", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> float:
        # pydantic only reports ValueError/AssertionError as validation errors
        try:
            score = float(value)  # type: ignore[arg-type]
        except TypeError as e:
            raise ValueError(f"score must be a number, got {value!r}") from e
        return max(1.0, min(5.0, score))

    def mean(self) -> float:
        values = [
            self.readability, self.pacing, self.character_appeal,
            self.emotional_impact, self.hook_strength,
        ]
        return round(sum(values) / len(values), 2)


class QualityCheckResult(WireModel):
    scores: QualityScores | None = None
    average_score: float = 0.0
    weaknesses: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class EpisodeResult(BaseModel):
    episode: StoryEpisode
    updated_state: StoryState


# ---------------------------------------------------------------------------
# Story aggregate (owned by the caller layer, never by the pipeline)
# ---------------------------------------------------------------------------

StoryStatus = Literal["generating", "in_progress", "completed", "error"]

TOTAL_EPISODES = 3


class Story(WireModel):
    id: str
    user_id: str
    genre: GenreId
    theme: str | None = None
    outline: StoryOutline
    episodes: list[StoryEpisode] = Field(default_factory=list)
    story_state: StoryState
    status: StoryStatus = "in_progress"
    current_episode: int = 0
    trait_ids: list[str] = Field(default_factory=list)
    trait_count: int = 0
    birth_year: int | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None


class StorySummary(WireModel):
    id: str
    genre: GenreId
    theme: str | None = None
    series_title: str
    status: StoryStatus
    current_episode: int
    trait_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
