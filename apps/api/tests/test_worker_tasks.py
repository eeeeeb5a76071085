"""Tests for worker notification and event delivery tasks."""

import hashlib
import hmac
import json
from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import MagicMock, patch

import httpx
import pytest

from pactlink_api.models import TokenPurpose
from pactlink_worker import tasks
from pactlink_worker.tasks import (
    DeliveryError,
    compute_signature,
    post_signed,
    publish_signature_completed,
    send_notification,
    sweep_expired_tokens,
)


@pytest.fixture
def mock_client():
    """Patch the HTTP client used for outbound deliveries."""
    with patch("pactlink_worker.tasks.httpx.Client") as client_cls:
        client = MagicMock()
        client.post.return_value = MagicMock(status_code=202)
        client_cls.return_value.__enter__.return_value = client
        yield client


def test_signature_covers_timestamp_and_body():
    body = json.dumps({"event": "test"}, sort_keys=True).encode()
    expected = hmac.new(b"secret", b"1700000000." + body, hashlib.sha256).hexdigest()

    assert compute_signature(body, "secret", "1700000000") == expected
    assert compute_signature(body, "secret", "1700000001") != expected


def test_post_signed_sends_exactly_the_signed_bytes(mock_client):
    with patch.object(tasks.settings, "notification_signing_secret", "hook-secret"):
        status = post_signed("https://hooks.example.com/notify", "notification.brand_reply", {"b": 2, "a": 1})

    assert status == 202
    _, kwargs = mock_client.post.call_args
    headers = kwargs["headers"]
    sent = kwargs["content"]
    assert sent == json.dumps({"a": 1, "b": 2}, sort_keys=True).encode()
    assert headers["X-PactLink-Event"] == "notification.brand_reply"

    expected = compute_signature(sent, "hook-secret", headers["X-PactLink-Timestamp"])
    assert headers["X-PactLink-Signature"] == f"sha256={expected}"


def test_post_signed_without_secret_is_unsigned(mock_client):
    with patch.object(tasks.settings, "notification_signing_secret", None):
        post_signed("https://hooks.example.com/notify", "signature.completed", {})

    _, kwargs = mock_client.post.call_args
    assert "X-PactLink-Signature" not in kwargs["headers"]


def test_non_2xx_is_a_delivery_error(mock_client):
    mock_client.post.return_value = MagicMock(status_code=500)

    with pytest.raises(DeliveryError):
        post_signed("https://hooks.example.com/notify", "signature.completed", {})


def test_notification_dropped_without_webhook(mock_client):
    with patch.object(tasks.settings, "notification_webhook_url", None):
        result = send_notification.run("brand@example.com", "brand_reply", {"link": "https://x/t/s"})

    assert result == {"delivered": False}
    mock_client.post.assert_not_called()


def test_notification_delivered(mock_client):
    with patch.object(tasks.settings, "notification_webhook_url", "https://hooks.example.com/notify"):
        result = send_notification.run(
            "creator@example.com", "sign_contract_otp", {"token_id": "t1", "code": "123456"}
        )

    assert result == {"delivered": True, "status": 202}
    _, kwargs = mock_client.post.call_args
    body = json.loads(kwargs["content"])
    assert body["recipient"] == "creator@example.com"
    assert body["purpose"] == "sign_contract_otp"


def test_notification_does_not_log_payload(mock_client):
    with patch.object(tasks.settings, "notification_webhook_url", "https://hooks.example.com/notify"):
        with patch("pactlink_worker.tasks.logger") as mock_logger:
            send_notification.run("creator@example.com", "sign_contract_otp", {"token_id": "t1", "code": "987654"})

    for call in mock_logger.method_calls:
        assert "987654" not in str(call)


def test_signature_completed_published(mock_client):
    event = {
        "deal_id": "deal-1",
        "role": "brand",
        "fully_executed": True,
    }
    with patch.object(tasks.settings, "events_webhook_url", "https://events.example.com/hook"):
        result = publish_signature_completed.run(event)

    assert result["delivered"] is True
    args, kwargs = mock_client.post.call_args
    assert args[0] == "https://events.example.com/hook"
    assert kwargs["headers"]["X-PactLink-Event"] == "signature.completed"
    assert json.loads(kwargs["content"]) == event


def test_transport_errors_are_retried():
    assert httpx.HTTPError in send_notification.autoretry_for
    assert DeliveryError in publish_signature_completed.autoretry_for


def test_sweep_task_reports_counts(db, token_store):
    # Issued on the frozen test date, long past by the system clock
    token_store.issue(TokenPurpose.BRAND_REPLY, "deal-W", ttl=timedelta(days=1))

    @contextmanager
    def test_scope():
        yield db

    with patch("pactlink_worker.tasks.session_scope", test_scope):
        result = sweep_expired_tokens.run()

    assert result == {"tokens": 1, "challenges": 0, "signatures": 0}
