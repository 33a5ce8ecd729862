import pytest

from app.core.database.engine import build_engine, build_sessionmaker, init_db


# Small descriptor table used across the suite:
#   Lesson has 3 fields -> 12 rows, Course has 2 fields -> 9 rows
DESCRIPTORS = {
    "Lesson": {
        "title": "create/read/update",
        "body": "read",
        "draft": None,
    },
    "Course": {
        "name": "read",
        "status": None,
    },
}


@pytest.fixture
def descriptors():
    return DESCRIPTORS


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'permissions.db'}"


@pytest.fixture
async def engine(database_url):
    engine = build_engine(database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
