"""Best-effort WebSocket fan-out of derived notifications.

Clients join named groups (User_<id>, Repository_<id>, WebhookEvent_<type>,
GeneralNotifications). A publish is delivered at most once to each client
connected at that moment; there is no queue and no retry, and a socket that
fails to receive is dropped.
"""

import asyncio
import json
import logging
from typing import Literal

from fastapi import WebSocket
from pydantic import BaseModel

from config import settings
from models import Notification, Severity

logger = logging.getLogger(__name__)

GENERAL_GROUP = "GeneralNotifications"


def user_group(user_id: object) -> str:
    return f"User_{user_id}"


def repository_group(repository_id: object) -> str:
    return f"Repository_{repository_id}"


def event_type_group(event_type: str) -> str:
    return f"WebhookEvent_{event_type}"


class Audience(BaseModel):
    """Who a publish targets: everyone, or one named group."""

    kind: Literal["all", "user", "repository", "eventType"]
    key: str | None = None

    @classmethod
    def parse(cls, value: str) -> "Audience":
        if value == "all":
            return cls(kind="all")
        kind, sep, key = value.partition(":")
        if not sep or not key or kind not in ("user", "repository", "eventType"):
            raise ValueError(f"Invalid audience: {value!r}")
        return cls(kind=kind, key=key)

    @property
    def group(self) -> str | None:
        if self.kind == "user":
            return user_group(self.key)
        if self.kind == "repository":
            return repository_group(self.key)
        if self.kind == "eventType":
            return event_type_group(self.key)
        return None

    def __str__(self) -> str:
        return "all" if self.kind == "all" else f"{self.kind}:{self.key}"


class PublishResult(BaseModel):
    delivered: int = 0
    failed: int = 0


class ConnectionManager:
    """In-process membership table for connected WebSocket clients."""

    def __init__(self) -> None:
        self.connections: set[WebSocket] = set()
        self.groups: dict[str, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str | None = None) -> None:
        await websocket.accept()
        self.connections.add(websocket)
        self.join(websocket, GENERAL_GROUP)
        if user_id:
            self.join(websocket, user_group(user_id))
        logger.info(f"WebSocket client connected (user={user_id}). Total: {len(self.connections)}")

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        for group in list(self.groups):
            members = self.groups[group]
            members.discard(websocket)
            if not members:
                del self.groups[group]

    def join(self, websocket: WebSocket, group: str) -> None:
        self.groups.setdefault(group, set()).add(websocket)

    def leave(self, websocket: WebSocket, group: str) -> None:
        members = self.groups.get(group)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.groups[group]

    def members(self, audience: Audience) -> set[WebSocket]:
        if audience.kind == "all":
            return set(self.connections)
        return set(self.groups.get(audience.group, set()))

    async def send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await asyncio.wait_for(
                websocket.send_text(json.dumps(message, default=str)),
                timeout=settings.PUBLISH_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.info(f"Dropping WebSocket client after failed send: {e!r}")
            self.disconnect(websocket)
            return False
        return True

    async def publish(self, audience: Audience | str, notification: Notification) -> PublishResult:
        if isinstance(audience, str):
            audience = Audience.parse(audience)
        frame = {
            "event": "notification",
            "audience": str(audience),
            "data": notification.wire(),
        }
        result = PublishResult()
        for websocket in self.members(audience):
            if await self.send(websocket, frame):
                result.delivered += 1
            else:
                result.failed += 1
        logger.debug(f"Published {notification.type} to {audience}: {result.delivered} delivered, {result.failed} failed")
        return result


manager = ConnectionManager()


# --------------- Notification builders ---------------

def review_severity(score: float | None) -> Severity:
    if score is None:
        return Severity.INFO
    if score >= 8.0:
        return Severity.SUCCESS
    if score >= 6.0:
        return Severity.WARNING
    return Severity.ERROR


def pull_request_severity(status: str, action: str = "") -> Severity:
    if status.lower() == "completed" or action.lower() == "merged":
        return Severity.SUCCESS
    if status.lower() == "abandoned":
        return Severity.WARNING
    return Severity.INFO


def webhook_received_notification(provider: str, event_type: str, repository: dict,
                                  summary: dict | None = None) -> Notification:
    return Notification(
        type="WebhookReceived",
        title=f"Webhook Received from {provider}",
        message=f"New {event_type} event received for repository {repository['name']}",
        repository_id=repository["id"],
        repository_name=repository["name"],
        action_url=f"/repositories/{repository['id']}",
        metadata={"webhookSource": provider, "eventType": event_type, **(summary or {})},
    )


def commit_notification(repository: dict, commit: dict, branch: str = "") -> Notification:
    message = commit.get("message") or ""
    headline = message if len(message) <= 50 else message[:50] + "..."
    where = f" to {branch}" if branch else ""
    return Notification(
        type="CommitProcessed",
        title=f"New Commit: {headline}",
        message=f"{commit['author_name']} committed{where} in {repository['name']}",
        repository_id=repository["id"],
        repository_name=repository["name"],
        action_url=f"/repositories/{repository['id']}/commits/{commit['commit_hash']}",
        metadata={
            "commitHash": commit["commit_hash"],
            "branch": branch,
            "author": commit["author_name"],
            "filesChanged": commit.get("changed_files", 0),
        },
    )


def pull_request_notification(repository: dict, pull_request: dict, action: str = "",
                              author: str = "") -> Notification:
    status = pull_request.get("status") or ""
    if status.lower() == "completed":
        kind = "PullRequestMerged"
    elif status.lower() == "abandoned":
        kind = "PullRequestClosed"
    else:
        kind = "PullRequestCreated" if action in ("", "opened", "created") else "PullRequestUpdated"
    verb = action or "updated"
    return Notification(
        type=kind,
        title=f"Pull Request {verb}: {pull_request['title']}",
        message=f"{author or 'Someone'} {verb} pull request #{pull_request['pr_id']} in {repository['name']}",
        severity=pull_request_severity(status, action),
        repository_id=repository["id"],
        repository_name=repository["name"],
        action_url=f"/repositories/{repository['id']}/pull-requests/{pull_request['pr_id']}",
        metadata={
            "pullRequestId": pull_request["pr_id"],
            "action": action,
            "author": author,
            "status": status,
        },
    )


def review_notification(review: dict, repository: dict | None = None, reviewer: str = "") -> Notification:
    score = review.get("score")
    score_text = f" (Score: {score:.1f})" if score is not None else ""
    where = f" in {repository['name']}" if repository else ""
    target = (f"pull-requests/{review['pull_request_id']}" if review.get("pull_request_id")
              else f"commits/{review.get('commit_id')}")
    return Notification(
        type="ReviewGenerated",
        title=f"Code Review {review['status'].title()}{score_text}",
        message=f"{review['type']} review by {reviewer or 'unassigned reviewer'}{where}",
        severity=review_severity(score),
        repository_id=repository["id"] if repository else None,
        repository_name=repository["name"] if repository else None,
        action_url=(f"/repositories/{repository['id']}/{target}/reviews/{review['id']}"
                    if repository else None),
        metadata={
            "reviewId": review["id"],
            "reviewType": review["type"],
            "score": score,
            "reviewer": reviewer,
        },
    )


def system_notification(title: str, message: str, severity: Severity = Severity.INFO,
                        data: dict | None = None) -> Notification:
    return Notification(
        type="SystemAlert",
        title=title,
        message=message,
        severity=severity,
        metadata={"systemGenerated": True, **(data or {})},
    )


# --------------- Post-ingestion fan-out ---------------

async def publish_quietly(audience: Audience | str, notification: Notification) -> PublishResult:
    """Publish and swallow any failure. Ingestion never depends on fan-out."""
    try:
        return await manager.publish(audience, notification)
    except Exception:
        logger.exception(f"Failed to publish {notification.type} notification to {audience}")
        return PublishResult()


async def notify_ingestion(provider: str, event_type: str, repository: dict,
                           commits: list[dict] | None = None, branch: str = "",
                           pull_request: dict | None = None, action: str = "",
                           author: str = "", summary: dict | None = None) -> None:
    """Tell all clients, the repository's subscribers, and the event type's subscribers."""
    repo_audience = Audience(kind="repository", key=str(repository["id"]))

    received = webhook_received_notification(provider, event_type, repository, summary)
    await publish_quietly(Audience(kind="all"), received)
    await publish_quietly(repo_audience, received)

    for commit in commits or []:
        note = commit_notification(repository, commit, branch)
        await publish_quietly(repo_audience, note)
        await publish_quietly(Audience(kind="eventType", key="push"), note)

    if pull_request:
        note = pull_request_notification(repository, pull_request, action, author)
        await publish_quietly(repo_audience, note)
        await publish_quietly(Audience(kind="eventType", key="pull_request"), note)
