import pytest
from fastapi.testclient import TestClient

from lesson_helpers import branching_lesson, opening_scenario


@pytest.fixture
def opening_doc():
    return opening_scenario()


@pytest.fixture
def branching_doc():
    return branching_lesson()


@pytest.fixture
def client():
    """Test client over a fresh app and an empty lesson store."""
    from lesson_timeline.api import create_app
    from lesson_timeline.store import LessonStore

    with TestClient(create_app(LessonStore(ttl_s=60))) as test_client:
        yield test_client
