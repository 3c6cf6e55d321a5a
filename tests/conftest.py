"""Shared fixtures: on-disk SQLite stores under tmp_path and fake collaborators."""

import pytest

from novelforge.database import ChapterStore, MetricsStore
from novelforge.jobs.checkpoint import CheckpointManager
from novelforge.jobs.database import JobDatabase
from novelforge.jobs.rate_limit import RateLimitHandler
from novelforge.jobs.session_tracker import SessionTracker
from novelforge.jobs.stages import StageHandlers
from novelforge.jobs.worker import QueueWorker
from tests.fakes import FakeEditorial, FakeGeneration, FakeSpecialists, RecordingSleep


STORY_BIBLE = {
    "premise": "A lighthouse keeper finds a message that should not exist.",
    "characters": [
        {"name": "Mara", "role": "protagonist"},
        {"name": "Tobias", "role": "antagonist"},
    ],
}

SCENE_CARDS = [
    {"goal": "Mara finds the bottle", "characters": ["Mara"]},
    {"goal": "Tobias arrives at the lighthouse", "characters": ["Mara", "Tobias"]},
]


@pytest.fixture
async def job_db(tmp_path):
    db = JobDatabase(str(tmp_path / "jobs.db"))
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def chapter_store(tmp_path):
    store = ChapterStore(str(tmp_path / "novelforge.db"))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def metrics_store(tmp_path):
    store = MetricsStore(str(tmp_path / "novelforge.db"))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def project_id(chapter_store):
    return await chapter_store.create_project("The Keeper", STORY_BIBLE)


@pytest.fixture
async def chapter_id(chapter_store, project_id):
    """Chapter 1, not yet written."""
    return await chapter_store.create_chapter(project_id, 1, scene_cards=SCENE_CARDS)


@pytest.fixture
async def written_chapter_id(chapter_store, project_id):
    """Chapter 2 with a draft, waiting for the editorial chain."""
    return await chapter_store.create_chapter(
        project_id,
        2,
        scene_cards=SCENE_CARDS,
        content="Mara climbed the stairs. The lamp was cold.",
        status="editing",
    )


@pytest.fixture
def checkpoints(job_db):
    return CheckpointManager(job_db)


@pytest.fixture
def session_tracker(job_db):
    return SessionTracker(job_db)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def rate_limit_handler(job_db, session_tracker, sleep):
    return RateLimitHandler(job_db, session_tracker, fallback_wait_seconds=1800, sleep=sleep)


@pytest.fixture
def generation():
    return FakeGeneration()


@pytest.fixture
def editorial():
    return FakeEditorial()


@pytest.fixture
def specialists():
    return FakeSpecialists()


@pytest.fixture
def handlers(checkpoints, chapter_store, metrics_store, generation, editorial, specialists):
    return StageHandlers(
        checkpoints=checkpoints,
        chapters=chapter_store,
        metrics=metrics_store,
        generation=generation,
        editorial=editorial,
        specialists=specialists,
    )


@pytest.fixture
def worker(job_db, checkpoints, handlers, rate_limit_handler):
    return QueueWorker(
        job_db=job_db,
        checkpoints=checkpoints,
        handlers=handlers,
        rate_limit_handler=rate_limit_handler,
        poll_interval_seconds=0.01,
        max_attempts=3,
        shutdown_timeout_seconds=0.2,
    )
