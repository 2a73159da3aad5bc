"""Pydantic models for canonical webhook records and API request/response."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator


PLACEHOLDER_NAME = "Unknown"
PLACEHOLDER_EMAIL = "unknown@unknown.com"

TERMINAL_PR_STATUSES = ("completed", "abandoned")


# --------------- Canonical webhook records ---------------

class NormalizedRepository(BaseModel):
    """Repository identity as found in a webhook payload."""

    name: str
    url: str


class NormalizedAuthor(BaseModel):
    name: str = PLACEHOLDER_NAME
    email: str = PLACEHOLDER_EMAIL


class NormalizedCommit(BaseModel):
    """One commit from a push batch. Change stats default to zero when absent."""

    hash: str
    message: str = ""
    author: NormalizedAuthor = Field(default_factory=NormalizedAuthor)
    timestamp: datetime
    url: str = ""
    changed_files: int = 0
    additions: int = 0
    deletions: int = 0


class NormalizedPullRequest(BaseModel):
    pr_id: int
    title: str = "No Title"
    description: str | None = None
    status: str = "active"
    source_ref: str = ""
    target_ref: str = ""
    url: str = ""
    created_date: datetime
    created_by: NormalizedAuthor = Field(default_factory=NormalizedAuthor)
    commit_hashes: list[str] = []

    @property
    def is_terminal(self) -> bool:
        return self.status.lower() in TERMINAL_PR_STATUSES


class PushEvent(BaseModel):
    """A commit batch, with the count of items dropped during parsing."""

    kind: Literal["push"] = "push"
    event_type: str
    repository: NormalizedRepository
    ref: str = ""
    commits: list[NormalizedCommit] = []
    skipped: int = 0

    @property
    def branch(self) -> str:
        return self.ref.removeprefix("refs/heads/")


class PullRequestEvent(BaseModel):
    kind: Literal["pull_request"] = "pull_request"
    event_type: str
    repository: NormalizedRepository
    pull_request: NormalizedPullRequest | None = None
    action: str = ""
    skipped: int = 0


class UnhandledEvent(BaseModel):
    """A well-formed delivery whose event type has no reconciliation."""

    kind: Literal["unhandled"] = "unhandled"
    event_type: str


NormalizedEvent = PushEvent | PullRequestEvent | UnhandledEvent


# --------------- Notifications ---------------

class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Notification(BaseModel):
    """Derived event pushed to WebSocket subscribers."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str
    title: str
    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    repository_id: int | None = None
    repository_name: str | None = None
    action_url: str | None = None
    metadata: dict = Field(default_factory=dict)

    def wire(self) -> dict:
        """JSON-safe camelCase dict for the WebSocket frame."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "repositoryId": self.repository_id,
            "repositoryName": self.repository_name,
            "actionUrl": self.action_url,
            "metadata": self.metadata,
        }


# --------------- Reviews ---------------

ReviewType = Literal["AI", "HUMAN"]
ReviewStatus = Literal["PENDING", "APPROVED", "REJECTED", "NEEDS_WORK"]


class ReviewCreate(BaseModel):
    type: ReviewType = "HUMAN"
    content: str
    score: float | None = Field(default=None, ge=0.0, le=10.0)
    suggestions: list[str] = []
    status: ReviewStatus = "PENDING"
    pull_request_id: int | None = None
    commit_id: int | None = None
    reviewer_id: int | None = None


class ReviewUpdate(BaseModel):
    """Partial update. Omitted fields are left alone; only `score` may be cleared with null."""

    content: str | None = None
    score: float | None = Field(default=None, ge=0.0, le=10.0)
    suggestions: list[str] | None = None
    status: ReviewStatus | None = None

    @field_validator("content", "suggestions", "status")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


# --------------- Read surface ---------------

class EngineerStats(BaseModel):
    total_commits: int = 0
    total_pull_requests: int = 0
    total_lines_added: int = 0
    total_lines_deleted: int = 0
    total_files_changed: int = 0
    total_reviews_received: int = 0
    total_reviews_given: int = 0
    average_review_score: float = 0.0
    period: str = ""


class LeaderboardEntry(BaseModel):
    rank: int
    engineer: dict
    stats: EngineerStats
