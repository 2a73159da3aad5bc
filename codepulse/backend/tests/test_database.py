"""Tests for database CRUD operations and aggregates."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

import database as db


async def _repo(name="web", url="https://github.com/acme/web"):
    return await db.insert_repository(name, url)


async def _commit(repo_id, commit_hash, author_id=None, when=None, **kwargs):
    return await db.insert_commit(
        repository_id=repo_id,
        commit_hash=commit_hash,
        message=kwargs.pop("message", "msg"),
        author_name="Ada",
        author_email="ada@x.io",
        commit_date=db.utc_iso(when),
        url="",
        author_id=author_id,
        **kwargs,
    )


class TestUtcIso:
    def test_naive_treated_as_utc(self):
        assert db.utc_iso(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05.000000+00:00"

    def test_offset_converted(self):
        dt = datetime(2024, 1, 2, 5, 0, tzinfo=timezone(timedelta(hours=2)))
        assert db.utc_iso(dt).startswith("2024-01-02T03:00:00")


class TestRepositories:
    async def test_insert_defaults(self):
        repo = await _repo()
        assert repo["project_id"] == "default"
        assert repo["default_branch"] == "main"
        assert repo["is_active"] == 1

    async def test_find_by_name_or_url(self):
        repo = await _repo()
        by_name = await db.find_repository_by_name_or_url("web", "https://elsewhere")
        by_url = await db.find_repository_by_name_or_url("renamed", "https://github.com/acme/web")
        assert by_name["id"] == repo["id"]
        assert by_url["id"] == repo["id"]
        assert await db.find_repository_by_name_or_url("nope", "https://nope") is None

    async def test_name_unique_within_project(self):
        await _repo()
        with pytest.raises(sqlite3.IntegrityError):
            await _repo(url="https://other")

    async def test_deactivate_keeps_row(self):
        repo = await _repo()
        updated = await db.deactivate_repository(repo["id"])
        assert updated["is_active"] == 0
        assert await db.list_repositories(active_only=True) == []
        assert len(await db.list_repositories()) == 1


class TestEngineers:
    async def test_email_unique(self):
        await db.insert_engineer("Ada", "ada@x.io")
        with pytest.raises(sqlite3.IntegrityError):
            await db.insert_engineer("Ada L.", "ada@x.io")

    async def test_find_by_email(self):
        eng = await db.insert_engineer("Ada", "ada@x.io")
        found = await db.find_engineer_by_email("ada@x.io")
        assert found["id"] == eng["id"]
        assert await db.find_engineer_by_email("bob@x.io") is None


class TestCommits:
    async def test_hash_unique_per_repository(self):
        repo = await _repo()
        await _commit(repo["id"], "abc")
        with pytest.raises(sqlite3.IntegrityError):
            await _commit(repo["id"], "abc")

    async def test_same_hash_in_other_repository(self):
        first = await _repo()
        second = await _repo("api", "https://github.com/acme/api")
        await _commit(first["id"], "abc")
        await _commit(second["id"], "abc")
        assert await db.find_commit(second["id"], "abc") is not None

    async def test_cascade_on_repository_delete(self):
        repo = await _repo()
        await _commit(repo["id"], "abc")
        conn = await db.get_db()
        try:
            await conn.execute("DELETE FROM repositories WHERE id = ?", (repo["id"],))
            await conn.commit()
        finally:
            await conn.close()
        assert await db.list_commits() == []

    async def test_link_to_pull_request_scoped_to_repository(self):
        web = await _repo()
        api = await _repo("api", "https://github.com/acme/api")
        await _commit(web["id"], "abc")
        await _commit(api["id"], "abc")
        pr = await db.insert_pull_request(web["id"], 7, "Title", None, "active", "feature", "main",
                                          "", db.utc_iso(), None)
        assert await db.link_commits_to_pull_request(web["id"], ["abc", "zzz"], pr["id"]) == 1
        assert (await db.find_commit(web["id"], "abc"))["pull_request_id"] == pr["id"]
        assert (await db.find_commit(api["id"], "abc"))["pull_request_id"] is None
        assert await db.link_commits_to_pull_request(web["id"], [], pr["id"]) == 0


class TestPullRequests:
    async def test_insert_and_update(self):
        repo = await _repo()
        pr = await db.insert_pull_request(repo["id"], 7, "Title", None, "active", "feature", "main",
                                          "", db.utc_iso(), None)
        updated = await db.update_pull_request(pr["id"], status="completed", closed_date=db.utc_iso())
        assert updated["status"] == "completed"
        assert updated["closed_date"] is not None
        assert (await db.get_pull_request(repo["id"], 7))["id"] == pr["id"]


class TestReviews:
    async def test_suggestions_round_trip_as_list(self):
        repo = await _repo()
        commit = await _commit(repo["id"], "abc")
        review = await db.create_review("HUMAN", "Looks good", 8.5, ["rename x"], commit_id=commit["id"])
        assert review["suggestions"] == ["rename x"]
        assert review["status"] == "PENDING"

    async def test_update(self):
        repo = await _repo()
        commit = await _commit(repo["id"], "abc")
        review = await db.create_review("AI", "Needs work", 4.0, commit_id=commit["id"])
        updated = await db.update_review(review["id"], status="NEEDS_WORK", suggestions=["split"])
        assert updated["status"] == "NEEDS_WORK"
        assert updated["suggestions"] == ["split"]

    async def test_list_filters(self):
        repo = await _repo()
        c1 = await _commit(repo["id"], "a")
        c2 = await _commit(repo["id"], "b")
        await db.create_review("HUMAN", "one", commit_id=c1["id"])
        await db.create_review("HUMAN", "two", commit_id=c2["id"], status="APPROVED")
        assert len(await db.list_reviews(commit_id=c1["id"])) == 1
        assert [r["content"] for r in await db.list_reviews(status="APPROVED")] == ["two"]


class TestWebhookEvents:
    async def test_mark_only_once(self):
        event = await db.insert_webhook_event("github", "push", "{}")
        assert event["processed"] == 0
        assert await db.mark_webhook_event(event["id"], None) is True
        assert await db.mark_webhook_event(event["id"], "late failure") is False
        stored = await db.get_webhook_event(event["id"])
        assert stored["processed"] == 1
        assert stored["error"] is None
        assert stored["processed_at"] is not None

    async def test_list_failed_only(self):
        ok = await db.insert_webhook_event("github", "push", "{}")
        bad = await db.insert_webhook_event("github", "push", "{}")
        await db.mark_webhook_event(ok["id"], None)
        await db.mark_webhook_event(bad["id"], "boom")
        failed = await db.list_webhook_events(failed_only=True)
        assert [e["id"] for e in failed] == [bad["id"]]

    async def test_set_event_type(self):
        event = await db.insert_webhook_event("azure-devops", "unknown", "{}")
        await db.set_webhook_event_type(event["id"], "git.push")
        assert (await db.get_webhook_event(event["id"]))["event_type"] == "git.push"


class TestAggregates:
    async def test_engineer_activity_window(self):
        repo = await _repo()
        eng = await db.insert_engineer("Ada", "ada@x.io")
        now = datetime.now(timezone.utc)
        await _commit(repo["id"], "new", eng["id"], now, additions=10, deletions=2, changed_files=3)
        await _commit(repo["id"], "old", eng["id"], now - timedelta(days=40), additions=99)

        stats = await db.engineer_activity(eng["id"], db.utc_iso(now - timedelta(days=30)), db.utc_iso(now))
        assert stats["total_commits"] == 1
        assert stats["total_lines_added"] == 10
        assert stats["total_lines_deleted"] == 2
        assert stats["total_files_changed"] == 3
        assert stats["average_review_score"] == 0.0

    async def test_reviews_received_through_commit(self):
        repo = await _repo()
        eng = await db.insert_engineer("Ada", "ada@x.io")
        commit = await _commit(repo["id"], "abc", eng["id"])
        await db.create_review("HUMAN", "ok", 6.0, commit_id=commit["id"])
        await db.create_review("HUMAN", "great", 9.0, commit_id=commit["id"])
        now = datetime.now(timezone.utc)
        stats = await db.engineer_activity(eng["id"], db.utc_iso(now - timedelta(days=1)), db.utc_iso(now))
        assert stats["total_reviews_received"] == 2
        assert stats["average_review_score"] == 7.5

    async def test_daily_commit_counts(self):
        repo = await _repo()
        now = datetime.now(timezone.utc)
        await _commit(repo["id"], "a", when=now)
        await _commit(repo["id"], "b", when=now)
        counts = await db.daily_commit_counts(db.utc_iso(now - timedelta(days=1)), db.utc_iso(now))
        assert counts == {now.date().isoformat(): 2}

    async def test_leaderboard_upsert_replaces(self):
        eng = await db.insert_engineer("Ada", "ada@x.io")
        stats = {
            "total_commits": 1, "total_pull_requests": 0, "total_lines_added": 0,
            "total_lines_deleted": 0, "total_files_changed": 0, "total_reviews_received": 0,
            "total_reviews_given": 0, "average_review_score": 0.0,
        }
        await db.upsert_leaderboard_stats(eng["id"], "WEEKLY", "s", "e", stats)
        row = await db.upsert_leaderboard_stats(eng["id"], "WEEKLY", "s", "e", {**stats, "total_commits": 5})
        assert row["total_commits"] == 5
        assert len(await db.list_leaderboard_stats(period="WEEKLY")) == 1
