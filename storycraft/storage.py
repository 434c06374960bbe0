"""JSON file storage for story documents.

All stories are stored as flat JSON files under a configurable base
directory. There is no database or ORM — reads and writes go through plain
helper methods that load and dump JSON.

Directory layout:

    {base}/
      stories/
        {story_id}.json       ← full Story document (outline, episodes, state)
"""

from __future__ import annotations

import re
from pathlib import Path

from storycraft.models import Story

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class StoryStore:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._root = base_path / "stories"
        self._root.mkdir(parents=True, exist_ok=True)

    def _story_file(self, story_id: str) -> Path:
        if not _SAFE_ID.match(story_id):
            raise ValueError(f"Invalid story id: {story_id!r}")
        return self._root / f"{story_id}.json"

    def save(self, story: Story) -> None:
        path = self._story_file(story.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(story.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        tmp.replace(path)

    def get(self, story_id: str) -> Story | None:
        try:
            path = self._story_file(story_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        return Story.model_validate_json(path.read_text(encoding="utf-8"))

    def list_for_user(self, user_id: str) -> list[Story]:
        """All stories owned by user_id, newest first."""
        stories = []
        for path in self._root.glob("*.json"):
            story = Story.model_validate_json(path.read_text(encoding="utf-8"))
            if story.user_id == user_id:
                stories.append(story)
        stories.sort(key=lambda s: s.created_at, reverse=True)
        return stories
