"""Tests for payload normalization and the persisted message format."""
import json

import pytest
from pydantic import ValidationError

from models.schemas import (
    DeliveryResult, DeliveryStatus, ProductPayload, QueueMessage,
    build_payload, make_idempotency_key,
)


class TestBuildPayload:
    def test_full_record(self):
        p = build_payload({"id": "789", "name": "Advanced Demo Product", "price": "99.99", "stock": 3})
        assert p == ProductPayload(id=789, name="Advanced Demo Product", price=99.99, stock=3)

    def test_missing_fields_default(self):
        p = build_payload({})
        assert p.id == 0
        assert p.name == "Unnamed"
        assert p.price == 0.0
        assert p.stock == 0

    def test_none_record(self):
        assert build_payload(None) == ProductPayload()

    def test_unconvertible_values_fall_back(self):
        p = build_payload({"id": "abc", "price": "n/a", "stock": None, "name": 42})
        assert p.id == 0
        assert p.price == 0.0
        assert p.stock == 0
        assert p.name == "42"

    @pytest.mark.parametrize("price", ["nan", "inf", "-Infinity", float("nan"), float("inf")])
    def test_non_finite_price_falls_back(self, price):
        p = build_payload({"id": 1, "price": price})
        assert p.price == 0.0

    def test_non_finite_numbers_for_int_fields_fall_back(self):
        p = build_payload({"id": float("inf"), "stock": float("nan")})
        assert p.id == 0
        assert p.stock == 0

    def test_non_finite_price_rejected_on_direct_construction(self):
        with pytest.raises(ValidationError):
            ProductPayload(id=1, price=float("nan"))

    def test_extra_fields_dropped(self):
        p = build_payload({"id": 1, "sku": "X-1", "name": "Widget"})
        assert p.model_dump() == {"id": 1, "name": "Widget", "price": 0.0, "stock": 0}


class TestQueueMessage:
    def test_new_message_defaults(self, demo_payload):
        msg = QueueMessage.new(demo_payload, now=1_700_000_000.5)
        assert msg.attempts == 0
        assert msg.next_attempt_at == 1_700_000_000.5
        assert msg.last_error is None
        assert msg.idempotency_key == "product:789:1700000000"
        assert msg.created_at.startswith("2023-11-14T22:13:20")
        assert len(msg.id) == 32

    def test_ids_are_unique(self, demo_payload):
        ids = {QueueMessage.new(demo_payload).id for _ in range(200)}
        assert len(ids) == 200

    def test_to_json_omits_missing_last_error(self, demo_payload):
        data = json.loads(QueueMessage.new(demo_payload).to_json())
        assert "last_error" not in data
        assert data["payload"]["name"] == "Advanced Demo Product"

    def test_to_json_keeps_unicode_and_slashes(self):
        msg = QueueMessage.new(ProductPayload(id=1, name="Café 1/2 kg"))
        assert "Café 1/2 kg" in msg.to_json()

    def test_parse_valid(self, demo_payload):
        msg = QueueMessage.new(demo_payload)
        assert QueueMessage.parse(msg.to_json()) == msg

    def test_parse_corrupt(self):
        assert QueueMessage.parse("{not json") is None
        assert QueueMessage.parse(b"[1, 2, 3]") is None
        assert QueueMessage.parse('{"payload": {"id": 1}}') is None
        assert QueueMessage.parse(b"") is None

    def test_is_due(self, demo_payload):
        msg = QueueMessage.new(demo_payload, now=100.0)
        assert msg.is_due(100.0)
        assert not msg.is_due(99.9)


def test_idempotency_key_format(demo_payload):
    assert make_idempotency_key(demo_payload, now=12.9) == "product:789:12"


def test_delivery_result_helpers():
    ok = DeliveryResult.success(201)
    assert ok.ok and ok.status == DeliveryStatus.SUCCESS and ok.status_code == 201
    bad = DeliveryResult.failure("HTTP 503 body=down", status_code=503)
    assert not bad.ok and bad.error == "HTTP 503 body=down"
