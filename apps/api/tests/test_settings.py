"""Tests for production settings validation."""

import pytest

from pactlink_api.settings import DEV_SECRET_KEY, Settings
from pactlink_worker.settings import Settings as WorkerSettings


def test_dev_secret_key_refused_in_production():
    settings = Settings(environment="production", secret_key=DEV_SECRET_KEY)
    with pytest.raises(ValueError, match="SECRET_KEY"):
        settings.validate_production_settings()


def test_dev_secret_key_allowed_in_test():
    Settings(environment="test", secret_key=DEV_SECRET_KEY).validate_production_settings()


def test_weak_token_entropy_refused_everywhere():
    settings = Settings(environment="test", token_secret_bytes=16)
    with pytest.raises(ValueError, match="TOKEN_SECRET_BYTES"):
        settings.validate_production_settings()


def test_unsigned_notification_webhook_refused_in_production():
    worker_settings = WorkerSettings(environment="production", notification_webhook_url="https://hooks.example.com/notify")
    with pytest.raises(ValueError, match="NOTIFICATION_SIGNING_SECRET"):
        worker_settings.validate_production_settings()


def test_webhook_settings_belong_to_the_worker():
    assert "notification_webhook_url" not in Settings.model_fields
    assert "notification_signing_secret" not in Settings.model_fields
    assert "notification_webhook_url" in WorkerSettings.model_fields

    # A shared .env naming the webhook does not trip the API checks
    Settings(
        environment="production",
        secret_key="a-real-secret",
        notification_webhook_url="https://hooks.example.com/notify",
    ).validate_production_settings()


def test_database_url_computed_from_parts():
    settings = Settings(database_url=None, postgres_user="u", postgres_password="p", postgres_db="d")
    assert settings.database_url_computed == "postgresql://u:p@localhost:5432/d"
