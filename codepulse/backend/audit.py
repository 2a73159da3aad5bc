"""Audit trail of inbound webhook deliveries.

Every delivery gets a webhook_events row before parsing begins. Writing the
audit row must never fail ingestion, so both calls here log and swallow
storage errors and report through their return value instead.
"""

import asyncio
import json
import logging

import database as db
from config import settings

logger = logging.getLogger(__name__)

RECEIVED = "received"
PROCESSED_OK = "processed-ok"
PROCESSED_FAILED = "processed-failed"


def state_of(event: dict) -> str:
    if not event.get("processed"):
        return RECEIVED
    return PROCESSED_FAILED if event.get("error") else PROCESSED_OK


def _payload_text(raw_payload: bytes | str | dict) -> str:
    if isinstance(raw_payload, bytes):
        return raw_payload.decode("utf-8", errors="replace")
    if isinstance(raw_payload, str):
        return raw_payload
    return json.dumps(raw_payload)


async def record(provider: str, event_type: str, raw_payload: bytes | str | dict) -> int | None:
    """Store a delivery in the `received` state. Returns the event id, or None on failure."""
    try:
        event = await asyncio.wait_for(
            db.insert_webhook_event(provider, event_type, _payload_text(raw_payload)),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    except Exception:
        logger.exception(f"Failed to record {provider} webhook event {event_type}")
        return None
    return event["id"]


async def classify(event_id: int | None, event_type: str) -> None:
    """Replace the provisional event type once the body has been parsed."""
    if event_id is None:
        return
    try:
        await asyncio.wait_for(
            db.set_webhook_event_type(event_id, event_type),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    except Exception:
        logger.exception(f"Failed to set event type of webhook event {event_id}")


async def mark_result(event_id: int | None, success: bool, error: str | None = None) -> bool:
    """Move a received event to processed-ok or processed-failed, exactly once."""
    if event_id is None:
        return False
    if not success and not error:
        error = "Webhook processing failed"
    try:
        updated = await asyncio.wait_for(
            db.mark_webhook_event(event_id, None if success else error),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    except Exception:
        logger.exception(f"Failed to mark webhook event {event_id}")
        return False
    if not updated:
        logger.warning(f"Webhook event {event_id} was already processed; result not recorded")
    return updated
