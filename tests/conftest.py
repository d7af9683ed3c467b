"""Shared pytest fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

EXCHANGE_ENV_VARS = [
    "EXCHANGE_TENANT_ID",
    "EXCHANGE_CLIENT_ID",
    "EXCHANGE_ORGANIZATION",
    "EXCHANGE_CERTIFICATE_THUMBPRINT",
    "EXCHANGE_CERTIFICATE_PATH",
    "EXCHANGE_CERTIFICATE_PASSWORD",
    "EXCHANGE_USER_PRINCIPAL_NAME",
    "MS_GRAPH_TENANT_ID",
    "MS_GRAPH_CLIENT_ID",
]


@pytest.fixture
def clean_exchange_env(monkeypatch):
    """Remove all Exchange-related environment variables."""
    for name in EXCHANGE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_env_vars(monkeypatch, clean_exchange_env):
    """Set mock environment variables for certificate auth."""
    monkeypatch.setenv("EXCHANGE_TENANT_ID", "test-tenant-id")
    monkeypatch.setenv("EXCHANGE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("EXCHANGE_ORGANIZATION", "test.onmicrosoft.com")
    monkeypatch.setenv("EXCHANGE_CERTIFICATE_PATH", "/path/to/cert.pfx")
    monkeypatch.setenv("EXCHANGE_CERTIFICATE_PASSWORD", "test-password")


@pytest.fixture
def mock_exchange_client():
    """Mock ExchangeOnlineClient with async methods."""
    client = MagicMock()
    client.ensure_connected = AsyncMock(return_value=True)
    client.get_mailboxes_without_archive = AsyncMock(return_value=[])
    client.enable_archive = AsyncMock()
    client.set_retention_policy = AsyncMock()
    client.disconnect = AsyncMock()
    client.close = AsyncMock()
    return client
