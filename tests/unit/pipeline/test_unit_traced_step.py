# tests/unit/pipeline/test_unit_traced_step.py — v1
"""Tests for pipeline/traced_step.py — timing and success/failure capture."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from checkout_ledger.logging.context import get_context
from checkout_ledger.pipeline.checksum import compute_input_checksum, compute_output_checksum
from checkout_ledger.pipeline.traced_step import traced_step


def _kwargs(tracker, **overrides):
    defaults = dict(
        tracker=tracker,
        session_id="chk_001",
        pipeline_type="checkout_digital",
        step="payment_initiated",
        handler="stripe",
    )
    defaults.update(overrides)
    return defaults


class TestTracedStep:
    @pytest.mark.asyncio
    async def test_success_records_event(self, tracker):
        payload = {"amount": 1200, "currency": "EUR"}

        async def charge():
            return {"charge_id": "ch_1"}

        result = await traced_step(charge, input=payload, **_kwargs(tracker))
        assert result == {"charge_id": "ch_1"}

        [event] = await tracker.get_events("chk_001")
        assert event.status == "success"
        assert event.handler == "stripe"
        assert event.input_checksum == compute_input_checksum(payload)
        assert event.output_checksum == compute_output_checksum({"charge_id": "ch_1"})
        assert event.duration_ms is not None and event.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_failure_records_and_reraises(self, tracker):
        async def charge():
            raise RuntimeError("card declined")

        with pytest.raises(RuntimeError, match="card declined"):
            await traced_step(charge, sequence=2, **_kwargs(tracker))

        [event] = await tracker.get_events("chk_001")
        assert event.status == "failure"
        assert event.error == "card declined"
        assert event.sequence == 2
        assert event.output_checksum is None

    @pytest.mark.asyncio
    async def test_failure_without_message_uses_type_name(self, tracker):
        async def charge():
            raise TimeoutError()

        with pytest.raises(TimeoutError):
            await traced_step(charge, **_kwargs(tracker))
        [event] = await tracker.get_events("chk_001")
        assert event.error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_no_input_means_no_input_checksum(self, tracker):
        async def work():
            return None

        await traced_step(work, **_kwargs(tracker))
        [event] = await tracker.get_events("chk_001")
        assert event.input_checksum is None
        assert event.output_checksum == compute_output_checksum(None)

    @pytest.mark.asyncio
    async def test_recording_failure_does_not_change_result(self):
        broken = AsyncMock()
        broken.track_event.side_effect = ConnectionError("store down")

        async def work():
            return 42

        assert await traced_step(work, **_kwargs(broken)) == 42
        broken.track_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unserializable_output_is_not_fatal(self, tracker):
        async def work():
            return object()

        result = await traced_step(work, **_kwargs(tracker))
        assert result is not None
        assert await tracker.get_events("chk_001") == []

    @pytest.mark.asyncio
    async def test_invalid_step_is_not_fatal(self, tracker):
        async def work():
            return "ok"

        assert await traced_step(work, **_kwargs(tracker, step="teleport")) == "ok"
        assert await tracker.get_events("chk_001") == []

    @pytest.mark.asyncio
    async def test_sets_step_context(self, tracker):
        async def work():
            return get_context()

        ctx = await traced_step(work, **_kwargs(tracker))
        assert ctx.step == "payment_initiated"
        assert ctx.handler == "stripe"

    @pytest.mark.asyncio
    async def test_metadata_passed_through(self, tracker):
        async def work():
            return "ok"

        await traced_step(work, metadata={"attempt": "web"}, **_kwargs(tracker))
        [event] = await tracker.get_events("chk_001")
        assert event.metadata == {"attempt": "web"}
