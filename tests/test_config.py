"""
Configuration and startup security tests.
"""

import pytest
from pydantic import ValidationError

from leadqueue.config import DEFAULT_RELEVANT_FIELDS, Environment, Settings, StoreBackend


def test_defaults():
    config = Settings(_env_file=None)
    assert config.lease_ttl_seconds == 1800
    assert config.refresh_debounce_seconds == 0.5
    assert config.filter_debounce_seconds == 0.3
    assert config.assignment_notify_delay_seconds == 0.1
    assert config.poll_interval_seconds == 30
    assert config.health_probe_interval_seconds == 30
    assert config.storage_signal_key == "leadQueueRefresh"
    assert config.change_feed_relevant_fields == DEFAULT_RELEVANT_FIELDS


def test_redis_backend_requires_url():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, store_backend=StoreBackend.REDIS)
    config = Settings(_env_file=None, redis_url="redis://localhost:6379/0", store_backend="redis")
    assert config.store_backend == StoreBackend.REDIS


@pytest.mark.parametrize(
    "field, value",
    [
        ("port", 0),
        ("lease_ttl_seconds", 0),
        ("redis_url", "http://localhost:6379"),
        ("lease_service_url", "ftp://leads"),
    ],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_relevant_fields_from_env(monkeypatch):
    monkeypatch.setenv("LEADQUEUE_CHANGE_FEED_RELEVANT_FIELDS", '["Status__c", "Name"]')
    assert Settings(_env_file=None).change_feed_relevant_fields == ["Status__c", "Name"]


def test_insecure_dev_rejected_outside_development(monkeypatch):
    from leadqueue.api import deps

    monkeypatch.setattr(deps.settings, "env", Environment.PRODUCTION)
    monkeypatch.setattr(deps.settings, "allow_insecure_dev", True)
    with pytest.raises(RuntimeError, match="SECURITY ERROR"):
        deps.validate_auth_config()


def test_missing_api_key_rejected(monkeypatch):
    from leadqueue.api import deps

    monkeypatch.setattr(deps.settings, "allow_insecure_dev", False)
    monkeypatch.setattr(deps.settings, "api_key", None)
    with pytest.raises(RuntimeError, match="LEADQUEUE_API_KEY"):
        deps.validate_auth_config()


@pytest.mark.asyncio
async def test_api_key_enforced(client, monkeypatch):
    from leadqueue.api import deps

    monkeypatch.setattr(deps.settings, "allow_insecure_dev", False)
    monkeypatch.setattr(deps.settings, "api_key", "s3cret")

    assert (await client.get("/v1/health")).status_code == 401
    response = await client.get("/v1/health", headers={"X-API-Key": "wrong"})
    assert response.status_code == 401
    response = await client.get("/v1/health", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200


def test_cors_is_explicit():
    config = Settings(_env_file=None)
    assert config.cors_allowed_origins != ["*"]
    assert "X-Holder-ID" in config.cors_allowed_headers
