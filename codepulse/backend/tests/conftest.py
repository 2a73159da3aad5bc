"""Shared fixtures for CodePulse backend tests."""

import json
import os
import sys
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# Ensure backend is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(autouse=True)
async def test_db(tmp_path):
    """Patch DB_PATH to a per-test temp file, init schema, clean after."""
    import database as db_module

    db_path = str(tmp_path / "test.db")
    original = db_module.DB_PATH
    db_module.DB_PATH = db_path

    await db_module.init_db()
    yield

    db_module.DB_PATH = original


@pytest.fixture(autouse=True)
def clean_connections():
    """The connection manager is process-wide; start every test empty."""
    from notifications import manager

    manager.connections.clear()
    manager.groups.clear()
    yield
    manager.connections.clear()
    manager.groups.clear()


@pytest.fixture
def webhook_secret():
    """Set WEBHOOK_SECRET for the duration of a test."""
    from config import settings

    original = settings.WEBHOOK_SECRET
    settings.WEBHOOK_SECRET = "test-secret-123"
    yield settings.WEBHOOK_SECRET
    settings.WEBHOOK_SECRET = original


@pytest_asyncio.fixture
async def async_client():
    """HTTPX async client wired to the FastAPI app without invoking lifespan."""
    import httpx
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class FakeWebSocket:
    """Stands in for a connected client; records frames or fails on send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.sent: list[str] = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, data: str):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    @property
    def frames(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]

    def notifications(self, kind: str | None = None) -> list[dict]:
        data = [f["data"] for f in self.frames if f.get("event") == "notification"]
        return [d for d in data if kind is None or d["type"] == kind]


@pytest.fixture
def fake_ws():
    return FakeWebSocket


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@pytest.fixture
def github_push_payload():
    """A GitHub push with two commits, timestamped now so they land in every period."""
    def make(commits=None, repo_name="web", repo_url="https://github.com/acme/web"):
        if commits is None:
            commits = [
                {
                    "id": "a1b2c3",
                    "message": "Fix login redirect",
                    "timestamp": now_iso(),
                    "url": f"{repo_url}/commit/a1b2c3",
                    "author": {"name": "Ada", "email": "ada@x.io"},
                    "added": ["a.py"],
                    "removed": [],
                    "modified": ["b.py", "c.py"],
                },
                {
                    "id": "d4e5f6",
                    "message": "Add tests",
                    "timestamp": now_iso(),
                    "url": f"{repo_url}/commit/d4e5f6",
                    "author": {"name": "Ada", "email": "ada@x.io"},
                    "added": [],
                    "removed": [],
                    "modified": ["test_b.py"],
                },
            ]
        return {
            "ref": "refs/heads/main",
            "repository": {"name": repo_name, "html_url": repo_url},
            "commits": commits,
        }
    return make


@pytest.fixture
def github_pr_payload():
    def make(number=7, action="opened", state="open", merged=False,
             repo_name="web", repo_url="https://github.com/acme/web"):
        return {
            "action": action,
            "number": number,
            "pull_request": {
                "number": number,
                "title": "Add caching",
                "body": "Speeds up the dashboard",
                "state": state,
                "merged": merged,
                "head": {"ref": "feature/cache"},
                "base": {"ref": "main"},
                "html_url": f"{repo_url}/pull/{number}",
                "created_at": now_iso(),
                "user": {"login": "ada"},
            },
            "repository": {"name": repo_name, "html_url": repo_url},
        }
    return make


@pytest.fixture
def azure_push_payload():
    def make(commits=None):
        if commits is None:
            commits = [
                {
                    "commitId": "be67f8871a4d2c75f13a51c1d3c30ac0d74d4ef4",
                    "comment": "Fixed bug in web.config file",
                    "author": {"name": "Jamal Hartnett", "email": "fabrikamfiber4@hotmail.com",
                               "date": "2024-02-25T19:01:00.0000000Z"},
                    "url": "https://fabrikam-fiber-inc.visualstudio.com/DefaultCollection/_git/Fabrikam-Fiber-Git/commit/be67f887",
                    "changeCounts": {"Add": 1, "Edit": 2},
                },
            ]
        return {
            "eventType": "git.push",
            "resource": {
                "commits": commits,
                "refUpdates": [{"name": "refs/heads/master"}],
                "repository": {
                    "name": "Fabrikam-Fiber-Git",
                    "remoteUrl": "https://fabrikam-fiber-inc.visualstudio.com/DefaultCollection/_git/Fabrikam-Fiber-Git",
                },
            },
        }
    return make


@pytest.fixture
def azure_pr_payload():
    def make(event_type="git.pullrequest.created", status="active", pr_id=1):
        return {
            "eventType": event_type,
            "resource": {
                "pullRequestId": pr_id,
                "title": "my first pull request",
                "description": " - test2\r\n",
                "status": status,
                "creationDate": "2024-06-15T17:31:31.4530000Z",
                "sourceRefName": "refs/heads/mytopic",
                "targetRefName": "refs/heads/master",
                "url": "https://fabrikam.visualstudio.com/DefaultCollection/_apis/git/repositories/4bc14d40/pullRequests/1",
                "createdBy": {"displayName": "Jamal Hartnett", "uniqueName": "fabrikamfiber4@hotmail.com"},
                "repository": {
                    "name": "Fabrikam",
                    "remoteUrl": "https://fabrikam.visualstudio.com/DefaultCollection/_git/Fabrikam",
                },
            },
        }
    return make
