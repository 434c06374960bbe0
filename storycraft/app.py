"""FastAPI endpoints under /api.

Authentication happens upstream; the caller's identity arrives in the
X-User-Id header. Generation failures are reported as a generic "please
retry" error, never as a parser trace.
"""

import logging
import os
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field

from storycraft.config import LLMSettings, PipelineSettings
from storycraft.llm import LLM
from storycraft.models import GenreId, Trait, UserProfile
from storycraft.pipeline import GenerationFailure
from storycraft.stories import (
    NotEnoughTraits,
    StoryBusy,
    StoryCompleted,
    StoryNotFound,
    StoryService,
)
from storycraft.storage import StoryStore

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"

router = APIRouter()


class CreateStory(BaseModel):
    genre: GenreId
    theme: str | None = None
    traits: list[Trait]
    user_profile: UserProfile | None = Field(default=None, alias="userProfile")


def get_service(request: Request) -> StoryService:
    return request.app.state.stories


def _dump(model: BaseModel) -> dict:
    return model.model_dump(by_alias=True, mode="json")


@router.post("/stories")
async def create_story(
    body: CreateStory,
    user_id: str = Header(alias="X-User-Id"),
    service: StoryService = Depends(get_service),
):
    """Plan a new series and generate episode 1."""
    try:
        story = await service.create_story(
            user_id, body.traits, body.genre, body.theme, body.user_profile,
        )
    except NotEnoughTraits as e:
        raise HTTPException(400, str(e))
    except GenerationFailure as e:
        logger.error("Story generation failed at %s: %s", e.stage, e.__cause__ or e)
        raise HTTPException(502, "Story generation failed, please try again")
    return {
        "storyId": story.id,
        "episode": _dump(story.episodes[0]),
        "totalEpisodes": len(story.outline.episodes),
    }


@router.post("/stories/{story_id}/episodes")
async def continue_story(
    story_id: str,
    user_id: str = Header(alias="X-User-Id"),
    service: StoryService = Depends(get_service),
):
    """Generate the next episode of an existing story."""
    try:
        story, episode = await service.continue_story(user_id, story_id)
    except StoryNotFound:
        raise HTTPException(404, "Story not found")
    except StoryCompleted:
        raise HTTPException(400, "Story already completed")
    except StoryBusy:
        raise HTTPException(409, "An episode is already being generated for this story")
    except GenerationFailure as e:
        logger.error("Episode generation failed at %s: %s", e.stage, e.__cause__ or e)
        raise HTTPException(502, "Episode generation failed, please try again")
    return {
        "episode": _dump(episode),
        "episodeNumber": episode.episode_number,
        "isCompleted": story.status == "completed",
    }


@router.get("/stories")
async def list_stories(
    user_id: str = Header(alias="X-User-Id"),
    service: StoryService = Depends(get_service),
):
    """List the caller's stories, newest first."""
    return {"stories": [_dump(s) for s in service.list_stories(user_id)]}


@router.get("/stories/{story_id}")
async def get_story(
    story_id: str,
    user_id: str = Header(alias="X-User-Id"),
    service: StoryService = Depends(get_service),
):
    """Get a full story document."""
    try:
        return _dump(service.get_story(user_id, story_id))
    except StoryNotFound:
        raise HTTPException(404, "Story not found")


def create_app(
    data_dir: Path | None = None,
    llm: LLM | None = None,
    settings: PipelineSettings | None = None,
) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    store = StoryStore(resolved)

    app = FastAPI(title="Storycraft")
    app.state.stories = StoryService(
        store,
        llm or LLMSettings.from_env().build_client(),
        settings or PipelineSettings.from_env(),
    )
    app.include_router(router, prefix="/api")
    return app
