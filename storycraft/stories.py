"""Story service — the caller side of the pipeline.

Owns the Story aggregate: runs the pipeline stages, persists the results and
serialises episode generation per story. The pipeline itself holds no state;
the per-story lock lives here.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from storycraft.config import PipelineSettings
from storycraft.llm import LLM
from storycraft.models import (
    TOTAL_EPISODES,
    Story,
    StoryEpisode,
    StorySummary,
    Trait,
    UserProfile,
)
from storycraft.pipeline import create_initial_state, generate_episode, generate_outline
from storycraft.storage import StoryStore

logger = logging.getLogger(__name__)


class StoryNotFound(LookupError):
    """No story with that id belongs to the requesting user."""


class StoryCompleted(ValueError):
    """All episodes already exist."""


class StoryBusy(RuntimeError):
    """An episode for this story is already being generated."""


class NotEnoughTraits(ValueError):
    """Too few traits to build a protagonist from."""


def _new_id() -> str:
    return uuid.uuid4().hex


class StoryService:
    def __init__(
        self,
        store: StoryStore,
        llm: LLM,
        settings: PipelineSettings | None = None,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._store = store
        self._llm = llm
        self._settings = settings or PipelineSettings()
        self._new_id = id_factory
        self._locks: dict[str, asyncio.Lock] = {}

    async def create_story(
        self,
        user_id: str,
        traits: list[Trait],
        genre: str,
        theme: str | None = None,
        profile: UserProfile | None = None,
    ) -> Story:
        """Plan the series and write episode 1. Nothing is stored on failure."""
        if len(traits) < self._settings.min_traits:
            raise NotEnoughTraits(
                f"At least {self._settings.min_traits} traits are required, got {len(traits)}"
            )
        profile = profile or UserProfile()
        nickname = profile.nickname or profile.display_name or None

        outline = await generate_outline(
            self._llm, traits, genre, theme, profile, nickname, self._settings,
        )
        initial_state = create_initial_state(outline)
        result = await generate_episode(
            self._llm, outline, 1, initial_state,
            birth_year=profile.birth_year, settings=self._settings,
        )

        story = Story(
            id=self._new_id(),
            user_id=user_id,
            genre=genre,
            theme=theme or None,
            outline=outline,
            episodes=[result.episode],
            story_state=result.updated_state,
            status="in_progress",
            current_episode=1,
            trait_ids=[t.id for t in traits if t.id],
            trait_count=len(traits),
            birth_year=profile.birth_year,
        )
        self._store.save(story)
        logger.info("Created story %s for user %s", story.id, user_id)
        return story

    async def continue_story(self, user_id: str, story_id: str) -> tuple[Story, StoryEpisode]:
        """Generate the next episode. Rejects a concurrent request for the same story."""
        if story_id in self._locks:
            raise StoryBusy(f"Episode generation already running for story {story_id}")
        lock = self._locks[story_id] = asyncio.Lock()

        # waiters are rejected above, so the entry can go as soon as this call ends
        try:
            async with lock:
                return await self._generate_next(user_id, story_id)
        finally:
            del self._locks[story_id]

    async def _generate_next(self, user_id: str, story_id: str) -> tuple[Story, StoryEpisode]:
        story = self.get_story(user_id, story_id)
        next_number = story.current_episode + 1
        if next_number > TOTAL_EPISODES:
            raise StoryCompleted(f"Story {story_id} is already completed")

        previous_tail = story.episodes[-1].body[-self._settings.previous_tail_chars:]
        result = await generate_episode(
            self._llm, story.outline, next_number, story.story_state,
            previous_tail=previous_tail,
            birth_year=story.birth_year,
            settings=self._settings,
        )

        now = datetime.now(timezone.utc)
        completed = next_number == TOTAL_EPISODES
        story = story.model_copy(update={
            "episodes": [*story.episodes, result.episode],
            "story_state": result.updated_state,
            "current_episode": next_number,
            "status": "completed" if completed else "in_progress",
            "updated_at": now,
            "completed_at": now if completed else None,
        })
        self._store.save(story)
        logger.info("Story %s: episode %d saved", story_id, next_number)
        return story, result.episode

    def get_story(self, user_id: str, story_id: str) -> Story:
        story = self._store.get(story_id)
        if story is None or story.user_id != user_id:
            raise StoryNotFound(story_id)
        return story

    def list_stories(self, user_id: str) -> list[StorySummary]:
        return [
            StorySummary(
                id=s.id,
                genre=s.genre,
                theme=s.theme,
                series_title=s.outline.series_title,
                status=s.status,
                current_episode=s.current_episode,
                trait_count=s.trait_count,
                created_at=s.created_at,
                updated_at=s.updated_at,
                completed_at=s.completed_at,
            )
            for s in self._store.list_for_user(user_id)
        ]
