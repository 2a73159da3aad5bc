"""Dashboard, engineer, repository and team analytics over a rolling period."""

import logging

import database as db
from leaderboard import engineer_summary
from periods import PeriodWindow, day_range, parse_period

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = "30d"


async def _daily_trend(window: PeriodWindow, engineer_id: int | None = None,
                       repository_id: int | None = None) -> list[dict]:
    start, end = window.bounds()
    counts = await db.daily_commit_counts(start, end, engineer_id=engineer_id, repository_id=repository_id)
    return [{"date": day, "value": counts.get(day, 0)} for day in day_range(window)]


async def _top_performers(window: PeriodWindow, limit: int = 5) -> list[dict]:
    start, end = window.bounds()
    ranked = []
    for engineer in await db.list_engineers(active_only=True):
        commits = await db.count_rows("commits", "commit_date", start, end, "author_id = ?", (engineer["id"],))
        ranked.append((commits, engineer))
    ranked.sort(key=lambda item: item[0], reverse=True)
    return [{**engineer_summary(e), "commit_count": n} for n, e in ranked[:limit]]


async def get_dashboard_analytics(period: str | None = None) -> dict:
    period = period or DEFAULT_PERIOD
    window = parse_period(period)
    start, end = window.bounds()
    return {
        "period": window.key,
        "total_repositories": await db.count_rows("repositories", where="is_active = 1"),
        "total_engineers": await db.count_rows("engineers", where="is_active = 1"),
        "total_pull_requests": await db.count_rows("pull_requests", "created_date", start, end),
        "total_commits": await db.count_rows("commits", "commit_date", start, end),
        "total_reviews": await db.count_rows("reviews", "created_at", start, end),
        "average_review_score": await db.average_review_score(start, end),
        "trend_data": await _daily_trend(window),
        "top_performers": await _top_performers(window),
        "repository_stats": await db.repository_stats(start, end),
    }


async def get_engineer_analytics(engineer_id: int, period: str | None = None) -> dict | None:
    engineer = await db.get_engineer(engineer_id)
    if engineer is None:
        return None
    period = period or DEFAULT_PERIOD
    window = parse_period(period)
    start, end = window.bounds()
    activity = await db.engineer_activity(engineer_id, start, end)
    return {
        "engineer": engineer_summary(engineer),
        "period": window.key,
        "metrics": {
            **activity,
            "commits_by_repository": await db.commits_by_repository(engineer_id, start, end),
            "daily_commits": await _daily_trend(window, engineer_id=engineer_id),
        },
    }


async def get_repository_analytics(repository_id: int, period: str | None = None) -> dict | None:
    repository = await db.get_repository(repository_id)
    if repository is None:
        return None
    period = period or DEFAULT_PERIOD
    window = parse_period(period)
    start, end = window.bounds()
    return {
        "repository": repository,
        "period": window.key,
        "metrics": {
            "commit_count": await db.count_rows(
                "commits", "commit_date", start, end, "repository_id = ?", (repository_id,)),
            "pull_request_count": await db.count_rows(
                "pull_requests", "created_date", start, end, "repository_id = ?", (repository_id,)),
            "active_contributors": await db.distinct_contributors(repository_id, start, end),
            "average_review_score": await db.average_review_score(start, end, repository_id=repository_id),
            "commit_trends": await _daily_trend(window, repository_id=repository_id),
        },
    }


async def get_team_comparison(period: str | None = None) -> dict:
    period = period or DEFAULT_PERIOD
    window = parse_period(period)
    start, end = window.bounds()
    rows = []
    for engineer in await db.list_engineers(active_only=True):
        activity = await db.engineer_activity(engineer["id"], start, end)
        rows.append({
            "engineer": engineer_summary(engineer),
            "total_commits": activity["total_commits"],
            "total_pull_requests": activity["total_pull_requests"],
            "average_review_score": activity["average_review_score"],
        })
    rows.sort(key=lambda r: r["total_commits"], reverse=True)
    return {"period": window.key, "engineers": rows}
