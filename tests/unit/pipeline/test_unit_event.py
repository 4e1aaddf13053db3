# tests/unit/pipeline/test_unit_event.py — v2
"""Tests for pipeline/event.py — event ids, construction and validation."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from checkout_ledger.pipeline.event import (
    EventValidationError,
    create_event,
    create_event_id,
    parse_event_id,
    validate_event,
)
from checkout_ledger.pipeline.models import PipelineEvent


def _fields(**overrides):
    defaults = dict(
        session_id="chk_001",
        pipeline_type="checkout_digital",
        step="payment_initiated",
        status="success",
        handler="stripe",
    )
    defaults.update(overrides)
    return defaults


class TestEventId:
    def test_create_and_parse(self):
        event_id = create_event_id("chk_001", "checkout_digital", "payment_confirmed", 1)
        parsed = parse_event_id(event_id)
        assert parsed.session_id == "chk_001"
        assert parsed.pipeline_type == "checkout_digital"
        assert parsed.step == "payment_confirmed"
        assert parsed.sequence == 1
        assert parsed.nonce is not None and len(parsed.nonce) == 12

    def test_ids_are_unique_for_same_coordinates(self):
        a = create_event_id("chk_001", "checkout_digital", "payment_initiated")
        b = create_event_id("chk_001", "checkout_digital", "payment_initiated")
        assert a != b

    def test_parse_without_nonce(self):
        parsed = parse_event_id("chk_001.checkout_physical.buyer_validated.0")
        assert parsed.sequence == 0
        assert parsed.nonce is None

    def test_parse_rejects_garbage(self):
        with pytest.raises(EventValidationError):
            parse_event_id("not-an-id")

    def test_create_rejects_unsafe_session(self):
        with pytest.raises(EventValidationError):
            create_event_id("chk 001", "checkout_digital", "buyer_validated")


class TestCreateEvent:
    def test_fills_id_timestamp_and_sequence(self):
        event = create_event(**_fields())
        assert isinstance(event, PipelineEvent)
        assert event.sequence == 0
        assert event.timestamp.tzinfo is not None
        assert event.id.startswith("chk_001.checkout_digital.payment_initiated.0.")

    def test_keeps_explicit_id(self):
        event = create_event(**_fields(id="custom-id"))
        assert event.id == "custom-id"

    def test_naive_timestamp_becomes_utc(self):
        event = create_event(**_fields(timestamp=datetime(2026, 3, 1, 12, 0)))
        assert event.timestamp.tzinfo == timezone.utc

    def test_event_is_immutable(self):
        event = create_event(**_fields())
        with pytest.raises(Exception):
            event.status = "failure"  # type: ignore[misc]

    def test_unregistered_pipeline_type_gets_id(self):
        event = create_event(**_fields(pipeline_type="checkout_v2"))
        parsed = parse_event_id(event.id)
        assert parsed.pipeline_type == "checkout_v2"
        assert parsed.step == "payment_initiated"

    def test_dotted_pipeline_type_reports_id_error(self):
        with pytest.raises(EventValidationError, match="URL-safe") as exc_info:
            create_event(**_fields(pipeline_type="checkout.v2"))
        assert [e["field"] for e in exc_info.value.errors] == ["id"]

    def test_missing_step_reported_as_step(self):
        fields = _fields()
        del fields["step"]
        with pytest.raises(EventValidationError) as exc_info:
            create_event(**fields)
        assert [e["field"] for e in exc_info.value.errors] == ["step"]


class TestValidation:
    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"session_id": "chk 001"}, "session_id"),
            ({"session_id": "x" * 129}, "session_id"),
            ({"step": "shipping_rocket"}, "step"),
            ({"status": "done"}, "status"),
            ({"sequence": 100}, "sequence"),
            ({"sequence": -1}, "sequence"),
            ({"input_checksum": "ABC"}, "input_checksum"),
            ({"output_checksum": "a" * 63}, "output_checksum"),
            ({"duration_ms": -5}, "duration_ms"),
        ],
    )
    def test_rejects_invalid_field(self, overrides, field):
        with pytest.raises(EventValidationError) as exc_info:
            create_event(**_fields(**overrides))
        assert field in [e["field"] for e in exc_info.value.errors]

    def test_rejects_unknown_fields(self):
        with pytest.raises(EventValidationError):
            create_event(**_fields(colour="blue"))

    def test_error_message_lists_fields(self):
        with pytest.raises(EventValidationError, match="Invalid pipeline event: status"):
            create_event(**_fields(status="done"))

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            create_event(**_fields(step="nope"))

    def test_validate_raw_mapping(self, event_factory):
        event = event_factory()
        raw = event.model_dump(mode="json")
        assert validate_event(raw) == event

    def test_max_sequence_accepted(self):
        assert create_event(**_fields(sequence=99)).sequence == 99
