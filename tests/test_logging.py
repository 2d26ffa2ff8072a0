"""Tests for log processors and rate-limit keys."""

import pytest
from starlette.requests import Request

from petprint.api.rate_limit import client_key
from petprint.logging_config import add_service_context, mask_email, mask_email_fields
from petprint.settings import settings


def make_request(headers=None, client=("10.0.0.1", 5123)):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "client": client})


class TestMaskEmail:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("owner@example.com", "o***@example.com"),
            ("a@b.co", "a***@b.co"),
            ("not-an-email", "not-an-email"),
        ],
    )
    def test_mask(self, value, expected):
        assert mask_email(value) == expected

    def test_masks_known_fields_only(self):
        event = mask_email_fields(
            None,
            "info",
            {"event": "x", "customer_email": "owner@example.com", "code": "PARTNER1", "order_id": 7},
        )

        assert event == {"event": "x", "customer_email": "o***@example.com", "code": "PARTNER1", "order_id": 7}


class TestServiceContext:
    def test_adds_service_and_env(self):
        event = add_service_context(None, "info", {"event": "x"})

        assert event["service"] == settings.app_name
        assert event["env"] == settings.env

    def test_keeps_explicit_values(self):
        assert add_service_context(None, "info", {"service": "worker"})["service"] == "worker"


class TestClientKey:
    def test_remote_address(self):
        assert client_key(make_request()) == "10.0.0.1"

    def test_forwarded_for_ignored_by_default(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        assert client_key(request) == "10.0.0.1"

    def test_forwarded_for_when_trusted(self, monkeypatch):
        monkeypatch.setattr(settings, "trust_forwarded_for", True)
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        assert client_key(request) == "203.0.113.7"
