"""Webhook delivery pipeline: verify, audit, normalize, reconcile, fan out.

Every delivery is audited before anything else happens. Only an unknown
provider, a bad signature, an unparseable body or a payload without repository
identity fail a delivery. Individual bad items, notification failures and
audit write failures are logged and do not change the outcome.
"""

import hashlib
import hmac
import json
import logging

from pydantic import BaseModel

import audit
import database as db
import notifications
import reconciler
from config import settings
from errors import MalformedEnvelopeError
from models import PullRequestEvent, PushEvent
from normalizer import GITHUB, PROVIDERS, normalize

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Webhook processed successfully"
FAILURE_MESSAGE = "Failed to process webhook"


class IngestionResult(BaseModel):
    success: bool
    message: str = SUCCESS_MESSAGE
    error: str | None = None
    event_id: int | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @classmethod
    def failure(cls, error: str, event_id: int | None = None) -> "IngestionResult":
        return cls(success=False, message=FAILURE_MESSAGE, error=error, event_id=event_id)


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a GitHub `X-Hub-Signature-256` header."""
    if not signature:
        return False
    return hmac.compare_digest(signature.strip().lower(), sign(secret, body))


def _declared_event_type(provider: str, event_type: str | None, payload: object) -> str:
    if event_type:
        return event_type
    if isinstance(payload, dict):
        if provider == GITHUB:
            if "commits" in payload:
                return "push"
            if "pull_request" in payload:
                return "pull_request"
        elif payload.get("eventType"):
            return str(payload["eventType"])
    return "unknown"


async def process_webhook(provider: str, body: bytes, event_type: str | None = None,
                          signature: str | None = None, verify: bool = True) -> IngestionResult:
    """Run one delivery end to end.

    Expected failures come back as `IngestionResult(success=False)`. Anything
    unexpected (e.g. the store being unreachable) is recorded on the audit row
    and re-raised for the HTTP layer to turn into a 500.
    """
    provisional = event_type or "unknown"
    event_id = await audit.record(provider, provisional, body)

    if provider not in PROVIDERS:
        logger.warning(f"Rejected webhook for unsupported provider {provider!r}")
        error = f"Unsupported provider: {provider}"
        await audit.mark_result(event_id, False, error)
        return IngestionResult.failure(error, event_id)

    if verify and provider == GITHUB and settings.WEBHOOK_SECRET:
        if not verify_signature(settings.WEBHOOK_SECRET, body, signature):
            logger.warning("Rejected GitHub webhook with missing or invalid signature")
            await audit.mark_result(event_id, False, "Invalid webhook signature")
            return IngestionResult.failure("Invalid webhook signature", event_id)

    try:
        payload = json.loads(body)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Undecodable {provider} webhook body: {type(e).__name__}")
        payload = None

    declared = _declared_event_type(provider, event_type, payload)
    if declared != provisional:
        await audit.classify(event_id, declared)
    logger.info(f"Received {provider} webhook {declared} (audit id {event_id})")

    if payload is None:
        await audit.mark_result(event_id, False, "Invalid JSON payload")
        return IngestionResult.failure("Invalid JSON payload", event_id)

    try:
        event = normalize(provider, event_type, payload)
    except MalformedEnvelopeError as e:
        logger.warning(f"Malformed {provider} webhook {declared}: {e}")
        await audit.mark_result(event_id, False, str(e))
        return IngestionResult.failure(str(e), event_id)
    except Exception as e:
        logger.exception(f"Error normalizing {provider} webhook {declared}")
        await audit.mark_result(event_id, False, f"{type(e).__name__}: {e}")
        raise

    outcome = IngestionResult(success=True, event_id=event_id)
    try:
        if isinstance(event, PushEvent):
            applied = await reconciler.apply_push(event)
            await notifications.notify_ingestion(
                provider, declared, applied.repository,
                commits=applied.commits, branch=event.branch,
                summary={"commitsCreated": applied.created, "commitsSkipped": applied.skipped},
            )
        elif isinstance(event, PullRequestEvent):
            applied = await reconciler.apply_pull_request(event)
            author = event.pull_request.created_by.name if event.pull_request else ""
            await notifications.notify_ingestion(
                provider, declared, applied.repository,
                pull_request=applied.pull_request, action=event.action, author=author,
            )
        else:
            logger.info(f"No reconciliation for {provider} event {event.event_type}; marking processed")
            applied = None
    except Exception as e:
        logger.exception(f"Error processing {provider} webhook {declared}")
        await audit.mark_result(event_id, False, f"{type(e).__name__}: {e}")
        raise

    if applied is not None:
        outcome.created = applied.created
        outcome.updated = applied.updated
        outcome.skipped = applied.skipped + applied.malformed
        outcome.failed = applied.failed

    await audit.mark_result(event_id, True)
    return outcome


async def replay_webhook(event_id: int) -> IngestionResult | None:
    """Re-run a stored delivery as a new one. Returns None if the event does not exist."""
    stored = await db.get_webhook_event(event_id)
    if stored is None:
        return None
    event_type = stored["event_type"] if stored["event_type"] != "unknown" else None
    logger.info(f"Replaying webhook event {event_id} ({stored['provider']} {stored['event_type']})")
    return await process_webhook(stored["provider"], stored["payload"].encode(), event_type, verify=False)
