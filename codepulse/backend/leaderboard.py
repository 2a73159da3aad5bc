"""Engineer rankings computed from commits, pull requests and reviews."""

import logging
from datetime import datetime, timedelta, timezone

import database as db
from models import EngineerStats, LeaderboardEntry
from periods import PeriodWindow, parse_period, trend_windows

logger = logging.getLogger(__name__)

METRICS = (
    "total_commits",
    "total_pull_requests",
    "total_lines_added",
    "total_reviews_received",
    "average_review_score",
)
DEFAULT_METRIC = "total_commits"

_METRIC_ALIASES = {m.replace("_", ""): m for m in METRICS}


def canonical_metric(metric: str | None) -> str:
    """Accepts snake_case or CamelCase names; anything unknown ranks by commits."""
    if not metric:
        return DEFAULT_METRIC
    key = metric.replace("_", "").lower()
    if key not in _METRIC_ALIASES:
        logger.debug(f"Unknown leaderboard metric {metric!r}, using {DEFAULT_METRIC}")
    return _METRIC_ALIASES.get(key, DEFAULT_METRIC)


def engineer_summary(engineer: dict) -> dict:
    return {
        "id": engineer["id"],
        "name": engineer["name"],
        "email": engineer["email"],
        "avatar_url": engineer.get("avatar_url"),
        "joined_at": engineer.get("joined_at"),
        "is_active": bool(engineer.get("is_active", 1)),
    }


async def _stats(engineer_id: int, window: PeriodWindow) -> EngineerStats:
    start, end = window.bounds()
    activity = await db.engineer_activity(engineer_id, start, end)
    return EngineerStats(period=window.key, **activity)


async def get_leaderboard(period: str | None = None, metric: str | None = None,
                          limit: int = 10) -> list[LeaderboardEntry]:
    window = parse_period(period)
    metric = canonical_metric(metric)

    entries = []
    for engineer in await db.list_engineers(active_only=True):
        stats = await _stats(engineer["id"], window)
        entries.append(LeaderboardEntry(rank=0, engineer=engineer_summary(engineer), stats=stats))

    # Stable sort keeps ties in engineer id order
    entries.sort(key=lambda e: getattr(e.stats, metric), reverse=True)
    for rank, entry in enumerate(entries, start=1):
        entry.rank = rank
    return entries[:limit]


async def get_engineer_details(engineer_id: int, period: str | None = None) -> dict | None:
    engineer = await db.get_engineer(engineer_id)
    if engineer is None:
        return None

    window = parse_period(period)
    start, end = window.bounds()
    stats = await _stats(engineer_id, window)
    recent = await db.recent_activity(engineer_id, start, end)

    historical = []
    for past in trend_windows(window.key, count=6, now=window.end):
        past_stats = await _stats(engineer_id, past)
        historical.append({
            "period_start": past.start.isoformat(),
            "period_end": past.end.isoformat(),
            "stats": past_stats.model_dump(),
        })

    return {
        "engineer": engineer_summary(engineer),
        "period": window.key,
        "stats": stats.model_dump(),
        "historical_stats": historical,
        "recent_commits": recent["commits"],
        "recent_pull_requests": recent["pull_requests"],
        "metrics": {
            "total_reviews_given": stats.total_reviews_given,
            "average_score_received": stats.average_review_score,
        },
    }


async def get_leaderboard_trends(period: str | None = None, engineer_id: int | None = None,
                                 count: int = 6) -> list[dict]:
    """Per-window stats for every active engineer (or one), most recent window first."""
    engineers = await db.list_engineers(active_only=True)
    if engineer_id is not None:
        engineers = [e for e in engineers if e["id"] == engineer_id]

    trends = []
    for window in trend_windows(period, count=count):
        rows = []
        for engineer in engineers:
            stats = await _stats(engineer["id"], window)
            rows.append({"engineer": engineer_summary(engineer), "stats": stats.model_dump()})
        scores = [r["stats"]["average_review_score"] for r in rows]
        trends.append({
            "period": window.key,
            "period_start": window.start.isoformat(),
            "period_end": window.end.isoformat(),
            "engineers": rows,
            "totals": {
                "commits": sum(r["stats"]["total_commits"] for r in rows),
                "pull_requests": sum(r["stats"]["total_pull_requests"] for r in rows),
                "average_quality": round(sum(scores) / len(scores), 2) if scores else 0.0,
            },
        })
    return trends


async def compute_leaderboard_stats(period: str | None = None) -> int:
    """Snapshot the window ending at the next UTC midnight for every active engineer.

    Windows are day-aligned so recomputing on the same day updates the existing
    rows instead of adding new ones. Returns the number of rows written.
    """
    midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    window = parse_period(period, now=midnight + timedelta(days=1))
    start, end = window.bounds()
    written = 0
    for engineer in await db.list_engineers(active_only=True):
        activity = await db.engineer_activity(engineer["id"], start, end)
        await db.upsert_leaderboard_stats(engineer["id"], window.key, start, end, activity)
        written += 1
    logger.info(f"Computed {window.key} leaderboard stats for {written} engineers")
    return written
