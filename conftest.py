import pytest

from storycraft.storage import StoryStore
from tests.stubs import make_traits


@pytest.fixture
def store(tmp_path) -> StoryStore:
    """A fresh story store per test, under pytest's tmp dir."""
    return StoryStore(tmp_path)


@pytest.fixture
def traits():
    return make_traits(25)
