from __future__ import annotations

import hmac
from hashlib import sha256

import pytest

from webhook_service.domain.enums import EventType
from webhook_service.domain.webhooks import DomainEvent
from webhook_service.services.signing import parse_signature_header, sign, verify_signature


@pytest.fixture
def event() -> DomainEvent:
    return DomainEvent.create(
        EventType.UPLOAD_COMPLETED,
        {"file": "отчёт.pdf", "size": 42},
        source="storage",
    )


def test_sign_without_secret_is_empty(event):
    assert sign(event, None) == ""
    assert sign(event, "") == ""


def test_sign_is_deterministic_for_fixed_timestamp(event):
    first = sign(event, "s3cret", timestamp=1700000000)
    second = sign(event, "s3cret", timestamp=1700000000)
    assert first == second
    assert first.startswith("t=1700000000,s=")


def test_sign_matches_manual_hmac(event):
    header = sign(event, "s3cret", timestamp=1700000000)
    expected = hmac.new(
        b"s3cret",
        f"1700000000.{event.to_json()}".encode("utf-8"),
        sha256,
    ).hexdigest()
    assert header == f"t=1700000000,s={expected}"


def test_event_json_is_compact_and_keeps_unicode(event):
    raw = event.to_json()
    assert ", " not in raw and '": ' not in raw
    assert "отчёт.pdf" in raw


def test_signature_changes_with_secret_and_timestamp(event):
    base = sign(event, "a", timestamp=1)
    assert sign(event, "b", timestamp=1) != base
    assert sign(event, "a", timestamp=2) != base


def test_parse_signature_header():
    assert parse_signature_header("t=12,s=abcd") == (12, "abcd")
    with pytest.raises(ValueError):
        parse_signature_header("garbage")
    with pytest.raises(ValueError):
        parse_signature_header("t=x,s=abcd")


def test_verify_signature_roundtrip(event):
    header = sign(event, "s3cret", timestamp=1700000000)
    assert verify_signature(header, event.to_json(), "s3cret")
    assert not verify_signature(header, event.to_json(), "other")
    assert not verify_signature(header, event.to_json() + " ", "s3cret")


def test_verify_signature_rejects_empty_header(event):
    assert not verify_signature("", event.to_json(), "s3cret")


def test_verify_signature_tolerance(event):
    header = sign(event, "s3cret", timestamp=1000)
    assert verify_signature(header, event.to_json(), "s3cret", tolerance_seconds=300, now=1200)
    assert not verify_signature(header, event.to_json(), "s3cret", tolerance_seconds=300, now=1400)
