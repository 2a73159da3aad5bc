"""Tests for the webhook audit trail."""

from unittest.mock import AsyncMock, patch

import audit
import database as db


class TestRecord:
    async def test_received_state(self):
        event_id = await audit.record("github", "push", b'{"a": 1}')
        event = await db.get_webhook_event(event_id)
        assert event["payload"] == '{"a": 1}'
        assert audit.state_of(event) == audit.RECEIVED

    async def test_dict_payload_serialized(self):
        event_id = await audit.record("github", "push", {"a": 1})
        assert (await db.get_webhook_event(event_id))["payload"] == '{"a": 1}'

    async def test_store_failure_swallowed(self):
        with patch("database.insert_webhook_event", AsyncMock(side_effect=RuntimeError("disk full"))):
            assert await audit.record("github", "push", b"{}") is None


class TestMarkResult:
    async def test_success(self):
        event_id = await audit.record("github", "push", b"{}")
        assert await audit.mark_result(event_id, True) is True
        assert audit.state_of(await db.get_webhook_event(event_id)) == audit.PROCESSED_OK

    async def test_failure_gets_default_message(self):
        event_id = await audit.record("github", "push", b"{}")
        await audit.mark_result(event_id, False)
        event = await db.get_webhook_event(event_id)
        assert audit.state_of(event) == audit.PROCESSED_FAILED
        assert event["error"] == "Webhook processing failed"

    async def test_second_mark_ignored(self):
        event_id = await audit.record("github", "push", b"{}")
        await audit.mark_result(event_id, False, "bad signature")
        assert await audit.mark_result(event_id, True) is False
        assert (await db.get_webhook_event(event_id))["error"] == "bad signature"

    async def test_missing_event_id(self):
        assert await audit.mark_result(None, True) is False

    async def test_store_failure_swallowed(self):
        event_id = await audit.record("github", "push", b"{}")
        with patch("database.mark_webhook_event", AsyncMock(side_effect=RuntimeError("locked"))):
            assert await audit.mark_result(event_id, True) is False


class TestClassify:
    async def test_replaces_provisional_type(self):
        event_id = await audit.record("azure-devops", "unknown", b"{}")
        await audit.classify(event_id, "git.push")
        assert (await db.get_webhook_event(event_id))["event_type"] == "git.push"

    async def test_store_failure_swallowed(self):
        event_id = await audit.record("azure-devops", "unknown", b"{}")
        with patch("database.set_webhook_event_type", AsyncMock(side_effect=RuntimeError("locked"))):
            await audit.classify(event_id, "git.push")
        assert (await db.get_webhook_event(event_id))["event_type"] == "unknown"
