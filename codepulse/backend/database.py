"""SQLite database schema and CRUD operations using aiosqlite."""

import json
from datetime import datetime, timezone

import aiosqlite

from config import settings

DB_PATH = settings.DB_PATH

SCHEMA = """
CREATE TABLE IF NOT EXISTS repositories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    url TEXT NOT NULL,
    project_id TEXT NOT NULL DEFAULT 'default',
    default_branch TEXT NOT NULL DEFAULT 'main',
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(project_id, name)
);

CREATE TABLE IF NOT EXISTS engineers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    avatar_url TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    joined_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pull_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pr_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    source_ref TEXT NOT NULL DEFAULT '',
    target_ref TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'active',
    url TEXT NOT NULL DEFAULT '',
    created_date TEXT NOT NULL,
    closed_date TEXT,
    repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    created_by_id INTEGER REFERENCES engineers(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(repository_id, pr_id)
);

CREATE TABLE IF NOT EXISTS commits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    commit_hash TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    author_name TEXT NOT NULL,
    author_email TEXT NOT NULL,
    commit_date TEXT NOT NULL,
    url TEXT NOT NULL DEFAULT '',
    changed_files INTEGER NOT NULL DEFAULT 0,
    additions INTEGER NOT NULL DEFAULT 0,
    deletions INTEGER NOT NULL DEFAULT 0,
    repository_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    pull_request_id INTEGER REFERENCES pull_requests(id) ON DELETE SET NULL,
    author_id INTEGER REFERENCES engineers(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    UNIQUE(repository_id, commit_hash)
);

CREATE TABLE IF NOT EXISTS reviews (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    content TEXT NOT NULL,
    score REAL,
    suggestions TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'PENDING',
    pull_request_id INTEGER REFERENCES pull_requests(id) ON DELETE CASCADE,
    commit_id INTEGER REFERENCES commits(id) ON DELETE CASCADE,
    reviewer_id INTEGER REFERENCES engineers(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS leaderboard_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    engineer_id INTEGER NOT NULL REFERENCES engineers(id) ON DELETE CASCADE,
    period TEXT NOT NULL,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    total_commits INTEGER NOT NULL DEFAULT 0,
    total_pull_requests INTEGER NOT NULL DEFAULT 0,
    total_lines_added INTEGER NOT NULL DEFAULT 0,
    total_lines_deleted INTEGER NOT NULL DEFAULT 0,
    total_files_changed INTEGER NOT NULL DEFAULT 0,
    total_reviews_received INTEGER NOT NULL DEFAULT 0,
    total_reviews_given INTEGER NOT NULL DEFAULT 0,
    average_review_score REAL,
    computed_at TEXT NOT NULL,
    UNIQUE(engineer_id, period, period_start)
);

CREATE TABLE IF NOT EXISTS webhook_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider TEXT NOT NULL,
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    error TEXT,
    created_at TEXT NOT NULL,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_commits_author_date ON commits(author_id, commit_date);
CREATE INDEX IF NOT EXISTS idx_pull_requests_creator_date ON pull_requests(created_by_id, created_date);
CREATE INDEX IF NOT EXISTS idx_webhook_events_created ON webhook_events(created_at);
"""


def utc_iso(dt: datetime | None = None) -> str:
    """Fixed-width UTC timestamp so that stored values compare lexically."""
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


async def get_db() -> aiosqlite.Connection:
    """Open a database connection with row factory enabled."""
    db = await aiosqlite.connect(DB_PATH)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def init_db() -> None:
    """Initialize database schema."""
    db = await get_db()
    try:
        await db.executescript(SCHEMA)
        await db.commit()
    finally:
        await db.close()


async def _fetch_one(db: aiosqlite.Connection, table: str, row_id: int) -> dict | None:
    row = await (await db.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,))).fetchone()
    return dict(row) if row else None


# --------------- Repositories ---------------

async def find_repository_by_name_or_url(name: str, url: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM repositories WHERE name = ? OR url = ? ORDER BY id LIMIT 1",
            (name, url),
        )).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def insert_repository(name: str, url: str, project_id: str = "default",
                            default_branch: str = "main") -> dict:
    now = utc_iso()
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO repositories (name, url, project_id, default_branch, is_active, created_at, updated_at)
               VALUES (?, ?, ?, ?, 1, ?, ?)""",
            (name, url, project_id, default_branch, now, now),
        )
        await db.commit()
        return await _fetch_one(db, "repositories", cursor.lastrowid)
    finally:
        await db.close()


async def list_repositories(active_only: bool = False) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM repositories"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY name"
        rows = await (await db.execute(query)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def get_repository(repository_id: int) -> dict | None:
    db = await get_db()
    try:
        return await _fetch_one(db, "repositories", repository_id)
    finally:
        await db.close()


async def deactivate_repository(repository_id: int) -> dict | None:
    db = await get_db()
    try:
        await db.execute(
            "UPDATE repositories SET is_active = 0, updated_at = ? WHERE id = ?",
            (utc_iso(), repository_id),
        )
        await db.commit()
        return await _fetch_one(db, "repositories", repository_id)
    finally:
        await db.close()


# --------------- Engineers ---------------

async def find_engineer_by_email(email: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM engineers WHERE email = ?", (email,))).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def insert_engineer(name: str, email: str, avatar_url: str | None = None) -> dict:
    now = utc_iso()
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO engineers (email, name, avatar_url, is_active, joined_at, created_at, updated_at)
               VALUES (?, ?, ?, 1, ?, ?, ?)""",
            (email, name, avatar_url, now, now, now),
        )
        await db.commit()
        return await _fetch_one(db, "engineers", cursor.lastrowid)
    finally:
        await db.close()


async def get_engineer(engineer_id: int) -> dict | None:
    db = await get_db()
    try:
        return await _fetch_one(db, "engineers", engineer_id)
    finally:
        await db.close()


async def list_engineers(active_only: bool = True) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM engineers"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY id"
        rows = await (await db.execute(query)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


# --------------- Pull Requests ---------------

async def get_pull_request(repository_id: int, pr_id: int) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM pull_requests WHERE repository_id = ? AND pr_id = ?",
            (repository_id, pr_id),
        )).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def insert_pull_request(repository_id: int, pr_id: int, title: str, description: str | None,
                              status: str, source_ref: str, target_ref: str, url: str,
                              created_date: str, created_by_id: int | None,
                              closed_date: str | None = None) -> dict:
    now = utc_iso()
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO pull_requests
               (pr_id, title, description, source_ref, target_ref, status, url, created_date,
                closed_date, repository_id, created_by_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (pr_id, title, description, source_ref, target_ref, status, url, created_date,
             closed_date, repository_id, created_by_id, now, now),
        )
        await db.commit()
        return await _fetch_one(db, "pull_requests", cursor.lastrowid)
    finally:
        await db.close()


async def update_pull_request(row_id: int, **fields: object) -> dict | None:
    db = await get_db()
    try:
        fields["updated_at"] = utc_iso()
        sets = ", ".join(f"{k} = ?" for k in fields)
        vals = list(fields.values())
        vals.append(row_id)
        await db.execute(f"UPDATE pull_requests SET {sets} WHERE id = ?", vals)
        await db.commit()
        return await _fetch_one(db, "pull_requests", row_id)
    finally:
        await db.close()


async def get_pull_request_by_row_id(row_id: int) -> dict | None:
    db = await get_db()
    try:
        return await _fetch_one(db, "pull_requests", row_id)
    finally:
        await db.close()


# --------------- Commits ---------------

async def find_commit(repository_id: int, commit_hash: str) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute(
            "SELECT * FROM commits WHERE repository_id = ? AND commit_hash = ?",
            (repository_id, commit_hash),
        )).fetchone()
        return dict(row) if row else None
    finally:
        await db.close()


async def insert_commit(repository_id: int, commit_hash: str, message: str, author_name: str,
                        author_email: str, commit_date: str, url: str, author_id: int | None,
                        pull_request_id: int | None = None, changed_files: int = 0,
                        additions: int = 0, deletions: int = 0) -> dict:
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO commits
               (commit_hash, message, author_name, author_email, commit_date, url, changed_files,
                additions, deletions, repository_id, pull_request_id, author_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (commit_hash, message, author_name, author_email, commit_date, url, changed_files,
             additions, deletions, repository_id, pull_request_id, author_id, utc_iso()),
        )
        await db.commit()
        return await _fetch_one(db, "commits", cursor.lastrowid)
    finally:
        await db.close()


async def link_commits_to_pull_request(repository_id: int, commit_hashes: list[str],
                                       pull_request_row_id: int) -> int:
    """Point stored commits of this repository at a PR. Returns how many rows changed."""
    if not commit_hashes:
        return 0
    db = await get_db()
    try:
        placeholders = ", ".join("?" for _ in commit_hashes)
        cursor = await db.execute(
            f"""UPDATE commits SET pull_request_id = ?
                WHERE repository_id = ? AND commit_hash IN ({placeholders})""",
            [pull_request_row_id, repository_id, *commit_hashes],
        )
        await db.commit()
        return cursor.rowcount
    finally:
        await db.close()


async def list_commits(repository_id: int | None = None) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM commits WHERE 1=1"
        params: list = []
        if repository_id is not None:
            query += " AND repository_id = ?"
            params.append(repository_id)
        query += " ORDER BY commit_date DESC"
        rows = await (await db.execute(query, params)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def get_commit(commit_row_id: int) -> dict | None:
    db = await get_db()
    try:
        return await _fetch_one(db, "commits", commit_row_id)
    finally:
        await db.close()


# --------------- Reviews ---------------

def _review_row(row: aiosqlite.Row | None) -> dict | None:
    if row is None:
        return None
    review = dict(row)
    review["suggestions"] = json.loads(review.get("suggestions") or "[]")
    return review


async def create_review(review_type: str, content: str, score: float | None = None,
                        suggestions: list[str] | None = None, status: str = "PENDING",
                        pull_request_id: int | None = None, commit_id: int | None = None,
                        reviewer_id: int | None = None) -> dict:
    now = utc_iso()
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO reviews
               (type, content, score, suggestions, status, pull_request_id, commit_id,
                reviewer_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (review_type, content, score, json.dumps(suggestions or []), status,
             pull_request_id, commit_id, reviewer_id, now, now),
        )
        await db.commit()
        row = await (await db.execute("SELECT * FROM reviews WHERE id = ?", (cursor.lastrowid,))).fetchone()
        return _review_row(row)
    finally:
        await db.close()


async def get_review(review_id: int) -> dict | None:
    db = await get_db()
    try:
        row = await (await db.execute("SELECT * FROM reviews WHERE id = ?", (review_id,))).fetchone()
        return _review_row(row)
    finally:
        await db.close()


async def list_reviews(pull_request_id: int | None = None, commit_id: int | None = None,
                       status: str | None = None, limit: int = 50, offset: int = 0) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM reviews WHERE 1=1"
        params: list = []
        if pull_request_id is not None:
            query += " AND pull_request_id = ?"
            params.append(pull_request_id)
        if commit_id is not None:
            query += " AND commit_id = ?"
            params.append(commit_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = await (await db.execute(query, params)).fetchall()
        return [_review_row(r) for r in rows]
    finally:
        await db.close()


async def update_review(review_id: int, **fields: object) -> dict | None:
    if "suggestions" in fields:
        fields["suggestions"] = json.dumps(fields["suggestions"] or [])
    db = await get_db()
    try:
        fields["updated_at"] = utc_iso()
        sets = ", ".join(f"{k} = ?" for k in fields)
        vals = list(fields.values())
        vals.append(review_id)
        await db.execute(f"UPDATE reviews SET {sets} WHERE id = ?", vals)
        await db.commit()
        row = await (await db.execute("SELECT * FROM reviews WHERE id = ?", (review_id,))).fetchone()
        return _review_row(row)
    finally:
        await db.close()


# --------------- Webhook Events ---------------

async def insert_webhook_event(provider: str, event_type: str, payload: str) -> dict:
    db = await get_db()
    try:
        cursor = await db.execute(
            """INSERT INTO webhook_events (provider, event_type, payload, processed, created_at)
               VALUES (?, ?, ?, 0, ?)""",
            (provider, event_type, payload, utc_iso()),
        )
        await db.commit()
        return await _fetch_one(db, "webhook_events", cursor.lastrowid)
    finally:
        await db.close()


async def mark_webhook_event(event_id: int, error: str | None = None) -> bool:
    """Flip a received event to processed. Returns False if it was already processed."""
    db = await get_db()
    try:
        cursor = await db.execute(
            "UPDATE webhook_events SET processed = 1, error = ?, processed_at = ? WHERE id = ? AND processed = 0",
            (error, utc_iso(), event_id),
        )
        await db.commit()
        return cursor.rowcount > 0
    finally:
        await db.close()


async def set_webhook_event_type(event_id: int, event_type: str) -> None:
    db = await get_db()
    try:
        await db.execute("UPDATE webhook_events SET event_type = ? WHERE id = ?", (event_type, event_id))
        await db.commit()
    finally:
        await db.close()


async def get_webhook_event(event_id: int) -> dict | None:
    db = await get_db()
    try:
        return await _fetch_one(db, "webhook_events", event_id)
    finally:
        await db.close()


async def list_webhook_events(processed: bool | None = None, failed_only: bool = False,
                              limit: int = 50) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM webhook_events WHERE 1=1"
        params: list = []
        if processed is not None:
            query += " AND processed = ?"
            params.append(1 if processed else 0)
        if failed_only:
            query += " AND error IS NOT NULL"
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        rows = await (await db.execute(query, params)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


# --------------- Aggregates ---------------

async def engineer_activity(engineer_id: int, start: str, end: str) -> dict:
    """Commit, PR and review totals for one engineer inside [start, end]."""
    db = await get_db()
    try:
        commits = await (await db.execute(
            """SELECT COUNT(*) AS total_commits,
                      COALESCE(SUM(additions), 0) AS total_lines_added,
                      COALESCE(SUM(deletions), 0) AS total_lines_deleted,
                      COALESCE(SUM(changed_files), 0) AS total_files_changed
               FROM commits WHERE author_id = ? AND commit_date BETWEEN ? AND ?""",
            (engineer_id, start, end),
        )).fetchone()
        prs = await (await db.execute(
            "SELECT COUNT(*) AS cnt FROM pull_requests WHERE created_by_id = ? AND created_date BETWEEN ? AND ?",
            (engineer_id, start, end),
        )).fetchone()
        received = await (await db.execute(
            """SELECT COUNT(r.id) AS cnt, AVG(r.score) AS avg_score
               FROM reviews r
               LEFT JOIN pull_requests p ON r.pull_request_id = p.id
               LEFT JOIN commits c ON r.commit_id = c.id
               WHERE (p.created_by_id = ? OR c.author_id = ?)
                 AND r.created_at BETWEEN ? AND ?""",
            (engineer_id, engineer_id, start, end),
        )).fetchone()
        given = await (await db.execute(
            "SELECT COUNT(*) AS cnt FROM reviews WHERE reviewer_id = ? AND created_at BETWEEN ? AND ?",
            (engineer_id, start, end),
        )).fetchone()
        return {
            "total_commits": commits["total_commits"],
            "total_pull_requests": prs["cnt"],
            "total_lines_added": commits["total_lines_added"],
            "total_lines_deleted": commits["total_lines_deleted"],
            "total_files_changed": commits["total_files_changed"],
            "total_reviews_received": received["cnt"],
            "total_reviews_given": given["cnt"],
            "average_review_score": round(received["avg_score"], 2) if received["avg_score"] is not None else 0.0,
        }
    finally:
        await db.close()


async def recent_activity(engineer_id: int, start: str, end: str, limit: int = 10) -> dict:
    db = await get_db()
    try:
        commits = await (await db.execute(
            """SELECT * FROM commits WHERE author_id = ? AND commit_date BETWEEN ? AND ?
               ORDER BY commit_date DESC LIMIT ?""",
            (engineer_id, start, end, limit),
        )).fetchall()
        prs = await (await db.execute(
            """SELECT * FROM pull_requests WHERE created_by_id = ? AND created_date BETWEEN ? AND ?
               ORDER BY created_date DESC LIMIT ?""",
            (engineer_id, start, end, limit),
        )).fetchall()
        return {"commits": [dict(r) for r in commits], "pull_requests": [dict(r) for r in prs]}
    finally:
        await db.close()


async def count_rows(table: str, date_column: str | None = None, start: str | None = None,
                     end: str | None = None, where: str = "", params: tuple = ()) -> int:
    db = await get_db()
    try:
        query = f"SELECT COUNT(*) AS cnt FROM {table} WHERE 1=1"
        args: list = []
        if date_column and start and end:
            query += f" AND {date_column} BETWEEN ? AND ?"
            args.extend([start, end])
        if where:
            query += f" AND {where}"
            args.extend(params)
        row = await (await db.execute(query, args)).fetchone()
        return row["cnt"]
    finally:
        await db.close()


async def average_review_score(start: str, end: str, repository_id: int | None = None) -> float:
    db = await get_db()
    try:
        query = """SELECT AVG(r.score) AS avg_score FROM reviews r
                   LEFT JOIN pull_requests p ON r.pull_request_id = p.id
                   LEFT JOIN commits c ON r.commit_id = c.id
                   WHERE r.score IS NOT NULL AND r.created_at BETWEEN ? AND ?"""
        params: list = [start, end]
        if repository_id is not None:
            query += " AND (p.repository_id = ? OR c.repository_id = ?)"
            params.extend([repository_id, repository_id])
        row = await (await db.execute(query, params)).fetchone()
        return round(row["avg_score"], 2) if row["avg_score"] is not None else 0.0
    finally:
        await db.close()


async def daily_commit_counts(start: str, end: str, engineer_id: int | None = None,
                              repository_id: int | None = None) -> dict[str, int]:
    """Map of YYYY-MM-DD to commit count for days that have commits."""
    db = await get_db()
    try:
        query = """SELECT substr(commit_date, 1, 10) AS day, COUNT(*) AS cnt
                   FROM commits WHERE commit_date BETWEEN ? AND ?"""
        params: list = [start, end]
        if engineer_id is not None:
            query += " AND author_id = ?"
            params.append(engineer_id)
        if repository_id is not None:
            query += " AND repository_id = ?"
            params.append(repository_id)
        query += " GROUP BY day"
        rows = await (await db.execute(query, params)).fetchall()
        return {r["day"]: r["cnt"] for r in rows}
    finally:
        await db.close()


async def commits_by_repository(engineer_id: int, start: str, end: str) -> dict[str, int]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            """SELECT r.name AS name, COUNT(c.id) AS cnt FROM commits c
               JOIN repositories r ON c.repository_id = r.id
               WHERE c.author_id = ? AND c.commit_date BETWEEN ? AND ?
               GROUP BY r.name ORDER BY cnt DESC""",
            (engineer_id, start, end),
        )).fetchall()
        return {r["name"]: r["cnt"] for r in rows}
    finally:
        await db.close()


async def repository_stats(start: str, end: str, limit: int = 10) -> list[dict]:
    db = await get_db()
    try:
        rows = await (await db.execute(
            """SELECT r.*,
                      (SELECT COUNT(*) FROM commits c
                       WHERE c.repository_id = r.id AND c.commit_date BETWEEN ? AND ?) AS commit_count,
                      (SELECT COUNT(*) FROM pull_requests p
                       WHERE p.repository_id = r.id AND p.created_date BETWEEN ? AND ?) AS pull_request_count
               FROM repositories r WHERE r.is_active = 1
               ORDER BY commit_count DESC, r.name LIMIT ?""",
            (start, end, start, end, limit),
        )).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()


async def distinct_contributors(repository_id: int, start: str, end: str) -> int:
    db = await get_db()
    try:
        row = await (await db.execute(
            """SELECT COUNT(DISTINCT author_id) AS cnt FROM commits
               WHERE repository_id = ? AND author_id IS NOT NULL AND commit_date BETWEEN ? AND ?""",
            (repository_id, start, end),
        )).fetchone()
        return row["cnt"]
    finally:
        await db.close()


# --------------- Leaderboard Stats ---------------

async def upsert_leaderboard_stats(engineer_id: int, period: str, period_start: str,
                                   period_end: str, stats: dict) -> dict:
    db = await get_db()
    try:
        await db.execute(
            """INSERT INTO leaderboard_stats
               (engineer_id, period, period_start, period_end, total_commits, total_pull_requests,
                total_lines_added, total_lines_deleted, total_files_changed,
                total_reviews_received, total_reviews_given, average_review_score, computed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(engineer_id, period, period_start) DO UPDATE SET
                 period_end = excluded.period_end,
                 total_commits = excluded.total_commits,
                 total_pull_requests = excluded.total_pull_requests,
                 total_lines_added = excluded.total_lines_added,
                 total_lines_deleted = excluded.total_lines_deleted,
                 total_files_changed = excluded.total_files_changed,
                 total_reviews_received = excluded.total_reviews_received,
                 total_reviews_given = excluded.total_reviews_given,
                 average_review_score = excluded.average_review_score,
                 computed_at = excluded.computed_at""",
            (engineer_id, period, period_start, period_end, stats["total_commits"],
             stats["total_pull_requests"], stats["total_lines_added"], stats["total_lines_deleted"],
             stats["total_files_changed"], stats["total_reviews_received"],
             stats["total_reviews_given"], stats["average_review_score"], utc_iso()),
        )
        await db.commit()
        row = await (await db.execute(
            "SELECT * FROM leaderboard_stats WHERE engineer_id = ? AND period = ? AND period_start = ?",
            (engineer_id, period, period_start),
        )).fetchone()
        return dict(row)
    finally:
        await db.close()


async def list_leaderboard_stats(period: str | None = None, engineer_id: int | None = None) -> list[dict]:
    db = await get_db()
    try:
        query = "SELECT * FROM leaderboard_stats WHERE 1=1"
        params: list = []
        if period:
            query += " AND period = ?"
            params.append(period)
        if engineer_id is not None:
            query += " AND engineer_id = ?"
            params.append(engineer_id)
        query += " ORDER BY period_start DESC, total_commits DESC"
        rows = await (await db.execute(query, params)).fetchall()
        return [dict(r) for r in rows]
    finally:
        await db.close()
