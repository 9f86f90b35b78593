"""Shared test fixtures for the test suite."""
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from models import Developer, Team
from storage import SQLAlchemyStore


@pytest.fixture
def test_db_url():
    """Return a SQLite in-memory database URL for testing."""
    return "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def fixed_now():
    """A Wednesday, mid-day UTC."""
    return datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def store(test_db_url):
    """An open SQLAlchemyStore with all tables created."""
    sqlalchemy_store = SQLAlchemyStore(test_db_url)
    async with sqlalchemy_store:
        yield sqlalchemy_store


@pytest_asyncio.fixture
async def team(store):
    return await store.save(
        Team(
            name="Platform",
            jira_project_key="PLAT",
            gitlab_project_id="42",
            aws_resources={"ec2_instances": "i-1"},
        )
    )


@pytest_asyncio.fixture
async def developer(store, team):
    return await store.save(
        Developer(name="Ada Lovelace", email="ada@example.com", team_id=team.id)
    )
