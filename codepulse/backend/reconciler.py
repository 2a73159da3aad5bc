"""Idempotent upserts of normalized webhook records against the entity store.

Natural keys: repository name or url, engineer email, (repository, commit
hash), (repository, PR number). The UNIQUE constraints in the schema are the
real concurrency control; an IntegrityError on insert means a concurrent
delivery won the race and is handled by the entity's own policy.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel

import database as db
from config import settings
from models import (
    NormalizedCommit,
    NormalizedPullRequest,
    PullRequestEvent,
    PushEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_ID = "default"

# Per-item failures; anything else fails the whole delivery
ITEM_ERRORS = (asyncio.TimeoutError, sqlite3.Error, OverflowError)


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class ApplyResult(BaseModel):
    """What a single delivery changed in the store."""

    repository: dict
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    malformed: int = 0
    linked: int = 0
    commits: list[dict] = []
    pull_request: dict | None = None

    def count(self, outcome: ReconcileOutcome) -> None:
        if outcome is ReconcileOutcome.CREATED:
            self.created += 1
        elif outcome is ReconcileOutcome.UPDATED:
            self.updated += 1
        elif outcome is ReconcileOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


async def _store(coro):
    return await asyncio.wait_for(coro, timeout=settings.STORE_TIMEOUT_SECONDS)


# --------------- Identity resolution ---------------

async def resolve_repository(name: str, url: str) -> dict:
    """Find a repository by name OR url, creating it when neither matches."""
    existing = await _store(db.find_repository_by_name_or_url(name, url))
    if existing:
        return existing
    try:
        repository = await _store(db.insert_repository(name, url, project_id=DEFAULT_PROJECT_ID))
        logger.info(f"Created repository {name} ({url})")
        return repository
    except sqlite3.IntegrityError:
        existing = await _store(db.find_repository_by_name_or_url(name, url))
        if existing is None:
            raise
        return existing


async def resolve_engineer(name: str, email: str) -> dict:
    """Find an engineer by email. The display name is only written on creation."""
    existing = await _store(db.find_engineer_by_email(email))
    if existing:
        return existing
    try:
        engineer = await _store(db.insert_engineer(name, email))
        logger.info(f"Created engineer {name} <{email}>")
        return engineer
    except sqlite3.IntegrityError:
        existing = await _store(db.find_engineer_by_email(email))
        if existing is None:
            raise
        return existing


# --------------- Commits ---------------

async def reconcile_commit(repository_id: int,
                           commit: NormalizedCommit) -> tuple[ReconcileOutcome, dict | None]:
    """Insert a commit unless the repository already has its hash.

    Commit content is immutable once recorded: a redelivery is skipped, never
    merged into the existing row.
    """
    if await _store(db.find_commit(repository_id, commit.hash)):
        logger.debug(f"Commit {commit.hash} already recorded in repository {repository_id}")
        return ReconcileOutcome.SKIPPED, None

    engineer = await resolve_engineer(commit.author.name, commit.author.email)
    try:
        row = await _store(db.insert_commit(
            repository_id=repository_id,
            commit_hash=commit.hash,
            message=commit.message,
            author_name=commit.author.name,
            author_email=commit.author.email,
            commit_date=db.utc_iso(commit.timestamp),
            url=commit.url,
            author_id=engineer["id"],
            changed_files=commit.changed_files,
            additions=commit.additions,
            deletions=commit.deletions,
        ))
    except sqlite3.IntegrityError:
        logger.info(f"Commit {commit.hash} inserted concurrently, skipping")
        return ReconcileOutcome.SKIPPED, None

    logger.info(f"Created commit {commit.hash} by {commit.author.name} in repository {repository_id}")
    return ReconcileOutcome.CREATED, row


# --------------- Pull requests ---------------

def _pull_request_fields(pr: NormalizedPullRequest, existing: dict) -> dict:
    fields = {
        "title": pr.title,
        "description": pr.description,
        "status": pr.status,
        "source_ref": pr.source_ref,
        "target_ref": pr.target_ref,
        "url": pr.url,
    }
    # closed_date is one-way: set on the first terminal status, never cleared
    if pr.is_terminal and not existing.get("closed_date"):
        fields["closed_date"] = db.utc_iso(datetime.now(timezone.utc))
    return fields


async def reconcile_pull_request(repository_id: int, pr_id: int,
                                 pr: NormalizedPullRequest) -> tuple[ReconcileOutcome, dict]:
    """Update the (repository, pr_id) row in place, or insert it."""
    existing = await _store(db.get_pull_request(repository_id, pr_id))
    if existing:
        row = await _store(db.update_pull_request(existing["id"], **_pull_request_fields(pr, existing)))
        logger.info(f"Updated pull request {pr_id} in repository {repository_id}")
        return ReconcileOutcome.UPDATED, row

    engineer = await resolve_engineer(pr.created_by.name, pr.created_by.email)
    try:
        row = await _store(db.insert_pull_request(
            repository_id=repository_id,
            pr_id=pr_id,
            title=pr.title,
            description=pr.description,
            status=pr.status,
            source_ref=pr.source_ref,
            target_ref=pr.target_ref,
            url=pr.url,
            created_date=db.utc_iso(pr.created_date),
            created_by_id=engineer["id"],
            closed_date=db.utc_iso() if pr.is_terminal else None,
        ))
    except sqlite3.IntegrityError:
        existing = await _store(db.get_pull_request(repository_id, pr_id))
        if existing is None:
            raise
        row = await _store(db.update_pull_request(existing["id"], **_pull_request_fields(pr, existing)))
        logger.info(f"Pull request {pr_id} inserted concurrently, applied as update")
        return ReconcileOutcome.UPDATED, row

    logger.info(f"Created pull request {pr_id} in repository {repository_id}")
    return ReconcileOutcome.CREATED, row


# --------------- Whole events ---------------

async def apply_push(event: PushEvent) -> ApplyResult:
    """Reconcile every commit of a push. Bad items are logged and counted."""
    repository = await resolve_repository(event.repository.name, event.repository.url)
    result = ApplyResult(repository=repository, malformed=event.skipped)

    for commit in event.commits:
        try:
            outcome, row = await reconcile_commit(repository["id"], commit)
        except ITEM_ERRORS as e:
            logger.error(f"Failed to reconcile commit {commit.hash} in {repository['name']}: {e}")
            outcome, row = ReconcileOutcome.FAILED, None
        result.count(outcome)
        if row:
            result.commits.append(row)

    return result


async def apply_pull_request(event: PullRequestEvent) -> ApplyResult:
    """Reconcile the PR, then attach the commits it lists that are already stored."""
    repository = await resolve_repository(event.repository.name, event.repository.url)
    result = ApplyResult(repository=repository, malformed=event.skipped)
    if event.pull_request is None:
        return result

    pr = event.pull_request
    try:
        outcome, row = await reconcile_pull_request(repository["id"], pr.pr_id, pr)
        if pr.commit_hashes:
            result.linked = await _store(db.link_commits_to_pull_request(
                repository["id"], pr.commit_hashes, row["id"]))
    except ITEM_ERRORS as e:
        logger.error(f"Failed to reconcile pull request {pr.pr_id} in {repository['name']}: {e}")
        outcome, row = ReconcileOutcome.FAILED, None
    result.count(outcome)
    result.pull_request = row
    return result
