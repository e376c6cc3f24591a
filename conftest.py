"""Shared test fixtures."""

import json
from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config.settings import Settings, DatabaseSettings, GitHubSettings
from shared.database import DatabaseManager, DatabaseService
from services.task_tracker.main import create_app
from services.task_tracker.security import sign_payload

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Testing settings backed by a throwaway SQLite file."""
    return Settings(
        environment="testing",
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'task_tracker.db'}"),
        github=GitHubSettings(webhook_secret=WEBHOOK_SECRET),
    )


@pytest_asyncio.fixture
async def db(settings) -> AsyncGenerator[DatabaseManager, None]:
    manager = DatabaseManager(settings=settings)
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def db_service(db) -> DatabaseService:
    return DatabaseService(db)


@pytest.fixture
def app(settings, db):
    return create_app(settings=settings, db=db)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client talking to the app in-process."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def push_payload(ref: str = "refs/heads/web", *commits: Dict[str, Any]) -> Dict[str, Any]:
    return {"ref": ref, "commits": list(commits)}


def make_commit(
    commit_id: str = "abc123def456",
    message: str = "",
    added=(),
    modified=(),
    removed=(),
) -> Dict[str, Any]:
    return {
        "id": commit_id,
        "message": message,
        "added": list(added),
        "modified": list(modified),
        "removed": list(removed),
    }


def signed_headers(body: bytes, secret: str = WEBHOOK_SECRET) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": sign_payload(body, secret),
    }


@pytest.fixture
def deliver(client):
    """POST a payload to the webhook, signed with the test secret."""

    async def _deliver(payload: Dict[str, Any]):
        body = json.dumps(payload).encode("utf-8")
        return await client.post("/api/github-webhook", content=body, headers=signed_headers(body))

    return _deliver
