"""Provider-specific webhook parsers producing canonical records.

Pure transforms: nothing here touches the database. Items missing their
identity field (commit hash, PR number) are dropped with a warning; only a
payload with no usable repository identity is rejected outright.
"""

import logging
import re
from datetime import datetime, timezone

from errors import MalformedEnvelopeError, UnknownProviderError
from models import (
    PLACEHOLDER_EMAIL,
    PLACEHOLDER_NAME,
    NormalizedAuthor,
    NormalizedCommit,
    NormalizedEvent,
    NormalizedPullRequest,
    NormalizedRepository,
    PullRequestEvent,
    PushEvent,
    UnhandledEvent,
)

logger = logging.getLogger(__name__)

AZURE_DEVOPS = "azure-devops"
GITHUB = "github"
PROVIDERS = (AZURE_DEVOPS, GITHUB)

AZURE_PUSH_EVENTS = ("git.push",)
AZURE_PR_EVENTS = ("git.pullrequest.created", "git.pullrequest.updated", "git.pullrequest.merged")

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")

SQLITE_INT_MIN = -(2**63)
SQLITE_INT_MAX = 2**63 - 1


# --------------- Field helpers ---------------

def _obj(value: object) -> dict:
    return value if isinstance(value, dict) else {}


def _str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: object) -> int | None:
    """An int that fits a SQLite INTEGER column, or None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not SQLITE_INT_MIN <= number <= SQLITE_INT_MAX:
        logger.warning(f"Integer {value!r} out of storable range, ignoring")
        return None
    return number


def parse_timestamp(value: object, fallback: datetime | None = None) -> datetime:
    """Parse an ISO-8601 timestamp, falling back to ingestion time."""
    fallback = fallback or datetime.now(timezone.utc)
    text = _str(value)
    if not text:
        return fallback
    # Azure DevOps sends 7 fractional digits
    text = _FRACTION_RE.sub(r"\1", text.replace("Z", "+00:00"))
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable timestamp {value!r}, using ingestion time")
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _repository(raw: object, url_keys: tuple[str, ...]) -> NormalizedRepository:
    repo = _obj(raw)
    name = _str(repo.get("name"))
    url = next((_str(repo.get(k)) for k in url_keys if _str(repo.get(k))), None)
    if not name or not url:
        raise MalformedEnvelopeError("Missing repository information in webhook")
    return NormalizedRepository(name=name, url=url)


def _author(name: object, email: object) -> NormalizedAuthor:
    return NormalizedAuthor(
        name=_str(name) or PLACEHOLDER_NAME,
        email=_str(email) or PLACEHOLDER_EMAIL,
    )


# --------------- Azure DevOps ---------------

def _azure_push(event_type: str, resource: dict) -> PushEvent:
    repository = _repository(resource.get("repository"), ("remoteUrl", "url"))
    raw_commits = resource.get("commits")
    if not isinstance(raw_commits, list):
        raw_commits = []

    ref_updates = resource.get("refUpdates") or [{}]
    ref = _str(_obj(ref_updates[0]).get("name")) or ""

    commits: list[NormalizedCommit] = []
    skipped = 0
    for raw in raw_commits:
        item = _obj(raw)
        commit_hash = _str(item.get("commitId"))
        if not commit_hash:
            logger.warning(f"Skipping commit without id in push to {repository.name}")
            skipped += 1
            continue
        author = _obj(item.get("author"))
        change_counts = _obj(item.get("changeCounts"))
        commits.append(NormalizedCommit(
            hash=commit_hash,
            message=_str(item.get("comment")) or "",
            author=_author(author.get("name"), author.get("email")),
            timestamp=parse_timestamp(author.get("date")),
            url=_str(item.get("url")) or "",
            changed_files=_int(sum(_int(v) or 0 for v in change_counts.values())) or 0,
        ))

    return PushEvent(event_type=event_type, repository=repository, ref=ref,
                     commits=commits, skipped=skipped)


def _azure_pr_commits(resource: dict) -> list[str]:
    """Commit ids a PR resource names, from `commits` and `lastMergeSourceCommit`."""
    raw = resource.get("commits")
    items = [_obj(c) for c in raw] if isinstance(raw, list) else []
    items.append(_obj(resource.get("lastMergeSourceCommit")))
    hashes = [_str(item.get("commitId")) for item in items]
    return list(dict.fromkeys(h for h in hashes if h))


def _azure_pull_request(event_type: str, resource: dict) -> PullRequestEvent:
    repository = _repository(resource.get("repository"), ("remoteUrl", "url"))
    action = event_type.rsplit(".", 1)[-1]

    pr_id = _int(resource.get("pullRequestId"))
    if pr_id is None:
        logger.warning(f"Skipping pull request without id in {repository.name}")
        return PullRequestEvent(event_type=event_type, repository=repository, action=action, skipped=1)

    created_by = _obj(resource.get("createdBy"))
    pull_request = NormalizedPullRequest(
        pr_id=pr_id,
        title=_str(resource.get("title")) or "No Title",
        description=_str(resource.get("description")),
        status=_str(resource.get("status")) or "active",
        source_ref=_str(resource.get("sourceRefName")) or "",
        target_ref=_str(resource.get("targetRefName")) or "",
        url=_str(resource.get("url")) or "",
        created_date=parse_timestamp(resource.get("creationDate")),
        created_by=_author(created_by.get("displayName"), created_by.get("uniqueName")),
        commit_hashes=_azure_pr_commits(resource),
    )
    return PullRequestEvent(event_type=event_type, repository=repository,
                            pull_request=pull_request, action=action)


def normalize_azure_devops(event_type: str | None, payload: dict) -> NormalizedEvent:
    event_type = event_type or _str(payload.get("eventType")) or ""
    resource = _obj(payload.get("resource"))

    if event_type in AZURE_PUSH_EVENTS:
        return _azure_push(event_type, resource)
    if event_type in AZURE_PR_EVENTS:
        return _azure_pull_request(event_type, resource)

    logger.info(f"Unhandled Azure DevOps event type: {event_type or '<missing>'}")
    return UnhandledEvent(event_type=event_type or "unknown")


# --------------- GitHub ---------------

def _github_event_type(payload: dict) -> str:
    if "commits" in payload:
        return "push"
    if "pull_request" in payload:
        return "pull_request"
    return "unknown"


def _github_push(payload: dict) -> PushEvent:
    repository = _repository(payload.get("repository"), ("html_url", "url"))
    raw_commits = payload.get("commits")
    if not isinstance(raw_commits, list):
        raw_commits = []

    commits: list[NormalizedCommit] = []
    skipped = 0
    for raw in raw_commits:
        item = _obj(raw)
        commit_hash = _str(item.get("id"))
        if not commit_hash:
            logger.warning(f"Skipping commit without id in push to {repository.name}")
            skipped += 1
            continue
        author = _obj(item.get("author"))
        touched = [item.get(k) for k in ("added", "removed", "modified")]
        commits.append(NormalizedCommit(
            hash=commit_hash,
            message=_str(item.get("message")) or "",
            author=_author(author.get("name") or author.get("username"), author.get("email")),
            timestamp=parse_timestamp(item.get("timestamp")),
            url=_str(item.get("url")) or "",
            changed_files=sum(len(t) for t in touched if isinstance(t, list)),
        ))

    return PushEvent(event_type="push", repository=repository,
                     ref=_str(payload.get("ref")) or "", commits=commits, skipped=skipped)


def _github_status(pr: dict) -> str:
    if _str(pr.get("state")) == "closed":
        return "completed" if pr.get("merged") or pr.get("merged_at") else "abandoned"
    return "active"


def _github_pull_request(payload: dict) -> PullRequestEvent:
    repository = _repository(payload.get("repository"), ("html_url", "url"))
    action = _str(payload.get("action")) or ""
    pr = _obj(payload.get("pull_request"))

    pr_id = _int(pr.get("number")) if "number" in pr else _int(payload.get("number"))
    if pr_id is None:
        logger.warning(f"Skipping pull request without number in {repository.name}")
        return PullRequestEvent(event_type="pull_request", repository=repository, action=action, skipped=1)

    user = _obj(pr.get("user"))
    login = _str(user.get("login"))
    email = _str(user.get("email")) or (f"{login}@users.noreply.github.com" if login else None)
    head = _obj(pr.get("head"))
    head_sha = _str(head.get("sha"))
    pull_request = NormalizedPullRequest(
        pr_id=pr_id,
        title=_str(pr.get("title")) or "No Title",
        description=_str(pr.get("body")),
        status=_github_status(pr),
        source_ref=_str(head.get("ref")) or "",
        target_ref=_str(_obj(pr.get("base")).get("ref")) or "",
        url=_str(pr.get("html_url")) or _str(pr.get("url")) or "",
        created_date=parse_timestamp(pr.get("created_at")),
        created_by=_author(user.get("name") or login, email),
        commit_hashes=[head_sha] if head_sha else [],
    )
    return PullRequestEvent(event_type="pull_request", repository=repository,
                            pull_request=pull_request, action=action)


def normalize_github(event_type: str | None, payload: dict) -> NormalizedEvent:
    event_type = event_type or _github_event_type(payload)

    if event_type == "push":
        return _github_push(payload)
    if event_type == "pull_request":
        return _github_pull_request(payload)

    logger.info(f"Unhandled GitHub event type: {event_type}")
    return UnhandledEvent(event_type=event_type)


def normalize(provider: str, event_type: str | None, payload: object) -> NormalizedEvent:
    """Convert a raw provider payload into a canonical event.

    Raises MalformedEnvelopeError when the payload is not an object or has no
    repository identity, and UnknownProviderError for unsupported providers.
    """
    if not isinstance(payload, dict):
        raise MalformedEnvelopeError("Webhook payload must be a JSON object")
    if provider == AZURE_DEVOPS:
        return normalize_azure_devops(event_type, payload)
    if provider == GITHUB:
        return normalize_github(event_type, payload)
    raise UnknownProviderError(f"Unsupported webhook provider: {provider}")
