"""FastAPI application with webhook ingestion, REST read endpoints and WebSocket fan-out."""

import json
import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import analytics
import audit
import database as db
import ingestion
import leaderboard
import notifications
from config import settings
from errors import InvalidPeriodError
from models import ReviewCreate, ReviewUpdate
from notifications import Audience, manager
from periods import canonical_period

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),
        RotatingFileHandler(
            os.path.join(settings.LOG_DIR, "codepulse.log"), maxBytes=5_000_000, backupCount=3,
        ),
    ],
)
logger = logging.getLogger(__name__)


# --------------- App Lifecycle ---------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await db.init_db()
    logger.info("CodePulse backend started")
    yield
    logger.info("CodePulse backend shutting down")


app = FastAPI(
    title="CodePulse",
    description="Webhook ingestion and engineering analytics for Azure DevOps and GitHub",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidPeriodError)
async def invalid_period_handler(request: Request, exc: InvalidPeriodError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# --------------- Webhooks ---------------

@app.post("/webhooks/{provider}")
async def receive_webhook(provider: str, request: Request):
    """Ingest one delivery from Azure DevOps or GitHub."""
    body = await request.body()
    try:
        result = await ingestion.process_webhook(
            provider.lower(),
            body,
            event_type=request.headers.get("X-GitHub-Event"),
            signature=request.headers.get("X-Hub-Signature-256"),
        )
    except Exception:
        logger.exception(f"Unexpected error processing {provider} webhook")
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    if not result.success:
        logger.warning(f"{provider} webhook failed: {result.error}")
        return JSONResponse(status_code=400, content={"message": ingestion.FAILURE_MESSAGE})
    return {"message": ingestion.SUCCESS_MESSAGE}


@app.get("/api/webhook-events")
async def list_webhook_events(
    processed: bool | None = None,
    failed_only: bool = False,
    limit: int = Query(50, ge=1, le=500),
):
    events = await db.list_webhook_events(processed=processed, failed_only=failed_only, limit=limit)
    return [
        {k: v for k, v in e.items() if k != "payload"} | {"state": audit.state_of(e)}
        for e in events
    ]


@app.get("/api/webhook-events/{event_id}")
async def get_webhook_event(event_id: int):
    event = await db.get_webhook_event(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    return {**event, "state": audit.state_of(event)}


@app.post("/api/webhook-events/{event_id}/replay")
async def replay_webhook_event(event_id: int):
    """Re-run a stored payload. The replay is audited as a new delivery."""
    try:
        result = await ingestion.replay_webhook(event_id)
    except Exception:
        logger.exception(f"Unexpected error replaying webhook event {event_id}")
        return JSONResponse(status_code=500, content={"message": "Internal server error"})
    if result is None:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    return JSONResponse(status_code=200 if result.success else 400, content=result.model_dump())


# --------------- Repositories ---------------

@app.get("/api/repositories")
async def list_repositories(active_only: bool = False):
    return await db.list_repositories(active_only=active_only)


@app.get("/api/repositories/{repository_id}")
async def get_repository(repository_id: int):
    repository = await db.get_repository(repository_id)
    if not repository:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repository


@app.delete("/api/repositories/{repository_id}")
async def deactivate_repository(repository_id: int):
    """Soft delete: history stays, the repository just stops counting as active."""
    if not await db.get_repository(repository_id):
        raise HTTPException(status_code=404, detail="Repository not found")
    return await db.deactivate_repository(repository_id)


@app.get("/api/repositories/{repository_id}/analytics")
async def repository_analytics(repository_id: int, period: str = "30d"):
    result = await analytics.get_repository_analytics(repository_id, period)
    if result is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return result


# --------------- Leaderboard ---------------

@app.get("/api/leaderboard")
async def get_leaderboard(
    period: str = "MONTHLY",
    metric: str = leaderboard.DEFAULT_METRIC,
    limit: int = Query(10, ge=1, le=100),
):
    return await leaderboard.get_leaderboard(period, metric, limit)


@app.get("/api/leaderboard/engineer/{engineer_id}")
async def get_engineer_details(engineer_id: int, period: str = "MONTHLY"):
    details = await leaderboard.get_engineer_details(engineer_id, period)
    if details is None:
        raise HTTPException(status_code=404, detail="Engineer not found")
    return details


@app.get("/api/leaderboard/trends")
async def get_leaderboard_trends(period: str = "MONTHLY", engineer_id: int | None = None):
    return await leaderboard.get_leaderboard_trends(period, engineer_id)


@app.post("/api/leaderboard/recompute")
async def recompute_leaderboard(period: str = "MONTHLY"):
    written = await leaderboard.compute_leaderboard_stats(period)
    key = canonical_period(period)
    await notifications.publish_quietly(Audience(kind="all"), notifications.system_notification(
        "Leaderboard Updated",
        f"{key.title()} leaderboard recomputed for {written} engineers",
        data={"period": key, "engineers": written},
    ))
    return {"period": key, "engineers": written}


# --------------- Analytics ---------------

@app.get("/api/analytics/dashboard")
async def dashboard_analytics(period: str = "30d"):
    return await analytics.get_dashboard_analytics(period)


@app.get("/api/analytics/engineer/{engineer_id}")
async def engineer_analytics(engineer_id: int, period: str = "30d"):
    result = await analytics.get_engineer_analytics(engineer_id, period)
    if result is None:
        raise HTTPException(status_code=404, detail="Engineer not found")
    return result


@app.get("/api/analytics/repository/{repository_id}")
async def repository_analytics_alias(repository_id: int, period: str = "30d"):
    return await repository_analytics(repository_id, period)


@app.get("/api/analytics/team/comparison")
async def team_comparison(period: str = "30d"):
    return await analytics.get_team_comparison(period)


# --------------- Reviews ---------------

async def _review_context(review: dict) -> tuple[dict | None, dict | None]:
    """The repository a review belongs to and the engineer whose work it reviews."""
    target = None
    author_id = None
    if review.get("pull_request_id"):
        target = await db.get_pull_request_by_row_id(review["pull_request_id"])
        author_id = target["created_by_id"] if target else None
    elif review.get("commit_id"):
        target = await db.get_commit(review["commit_id"])
        author_id = target["author_id"] if target else None
    repository = await db.get_repository(target["repository_id"]) if target else None
    author = await db.get_engineer(author_id) if author_id else None
    return repository, author


async def _announce_review(review: dict) -> None:
    if review.get("score") is None:
        return
    repository, author = await _review_context(review)
    reviewer = await db.get_engineer(review["reviewer_id"]) if review.get("reviewer_id") else None
    note = notifications.review_notification(review, repository, reviewer["name"] if reviewer else "")
    if repository:
        await notifications.publish_quietly(Audience(kind="repository", key=str(repository["id"])), note)
    if author:
        await notifications.publish_quietly(Audience(kind="user", key=str(author["id"])), note)


@app.get("/api/reviews")
async def list_reviews(
    pull_request_id: int | None = None,
    commit_id: int | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await db.list_reviews(pull_request_id, commit_id, status, limit, offset)


@app.post("/api/reviews")
async def create_review(body: ReviewCreate):
    if body.pull_request_id is None and body.commit_id is None:
        raise HTTPException(status_code=400, detail="A review needs a pull_request_id or commit_id")
    if body.pull_request_id is not None and not await db.get_pull_request_by_row_id(body.pull_request_id):
        raise HTTPException(status_code=404, detail="Pull request not found")
    if body.commit_id is not None and not await db.get_commit(body.commit_id):
        raise HTTPException(status_code=404, detail="Commit not found")
    if body.reviewer_id is not None and not await db.get_engineer(body.reviewer_id):
        raise HTTPException(status_code=404, detail="Reviewer not found")

    review = await db.create_review(
        review_type=body.type,
        content=body.content,
        score=body.score,
        suggestions=body.suggestions,
        status=body.status,
        pull_request_id=body.pull_request_id,
        commit_id=body.commit_id,
        reviewer_id=body.reviewer_id,
    )
    await _announce_review(review)
    return review


@app.get("/api/reviews/{review_id}")
async def get_review(review_id: int):
    review = await db.get_review(review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


@app.put("/api/reviews/{review_id}")
async def update_review(review_id: int, body: ReviewUpdate):
    if not await db.get_review(review_id):
        raise HTTPException(status_code=404, detail="Review not found")
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")
    review = await db.update_review(review_id, **fields)
    await _announce_review(review)
    return review


# --------------- WebSocket ---------------

async def _handle_command(websocket: WebSocket, command: dict) -> dict:
    action = command.get("action")
    if action == "ping":
        return {"event": "pong"}
    if action in ("subscribe_repository", "unsubscribe_repository"):
        repository_id = command.get("repository_id")
        if repository_id is None:
            return {"event": "error", "message": "repository_id is required"}
        group = notifications.repository_group(repository_id)
        if action == "subscribe_repository":
            manager.join(websocket, group)
            return {"event": "subscribed", "group": group}
        manager.leave(websocket, group)
        return {"event": "unsubscribed", "group": group}
    if action == "subscribe_events":
        event_types = command.get("event_types") or []
        groups = [notifications.event_type_group(t) for t in event_types]
        for group in groups:
            manager.join(websocket, group)
        return {"event": "subscribed", "groups": groups}
    return {"event": "error", "message": f"Unknown action: {action}"}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: str | None = None):
    """WebSocket endpoint for live notifications."""
    await manager.connect(websocket, user_id)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
                continue
            try:
                command = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"event": "error", "message": "Invalid JSON"}))
                continue
            if not isinstance(command, dict):
                await websocket.send_text(json.dumps({"event": "error", "message": "Expected an object"}))
                continue
            await websocket.send_text(json.dumps(await _handle_command(websocket, command)))
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
        logger.info(f"WebSocket client disconnected. Total: {len(manager.connections)}")


# --------------- Health ---------------

@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "version": app.version,
        "repositories": await db.count_rows("repositories", where="is_active = 1"),
        "engineers": await db.count_rows("engineers"),
        "commits": await db.count_rows("commits"),
        "pull_requests": await db.count_rows("pull_requests"),
        "webhook_events": await db.count_rows("webhook_events"),
        "failed_webhook_events": await db.count_rows("webhook_events", where="error IS NOT NULL"),
        "websocket_clients": len(manager.connections),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
