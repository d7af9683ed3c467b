"""Configuration loading utilities."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass
class ExchangeCredentials:
    """Credentials for Exchange Online PowerShell authentication."""

    tenant_id: str | None = None
    client_id: str | None = None
    organization: str | None = None
    certificate_thumbprint: str | None = None
    certificate_path: str | None = None
    certificate_password: str | None = None
    user_principal_name: str | None = None

    @property
    def uses_certificate(self) -> bool:
        """Check if app-only certificate authentication is configured."""
        return bool(self.certificate_path or self.certificate_thumbprint)


def get_exchange_credentials() -> ExchangeCredentials:
    """Get Exchange Online credentials from environment.

    Certificate-based app-only access is used when a certificate is
    configured. Otherwise the connection is interactive, optionally
    pre-filled with an admin principal name.

    Environment variables:
        EXCHANGE_TENANT_ID: Tenant ID (falls back to MS_GRAPH_TENANT_ID)
        EXCHANGE_CLIENT_ID: App client ID (falls back to MS_GRAPH_CLIENT_ID)
        EXCHANGE_ORGANIZATION: Organization domain (e.g. contoso.onmicrosoft.com)
        EXCHANGE_CERTIFICATE_THUMBPRINT: Certificate thumbprint (Windows)
        EXCHANGE_CERTIFICATE_PATH: Path to .pfx certificate file
        EXCHANGE_CERTIFICATE_PASSWORD: Password for .pfx file
        EXCHANGE_USER_PRINCIPAL_NAME: Admin account for interactive sign-in

    Returns:
        ExchangeCredentials with whatever is configured

    Raises:
        ValueError: If certificate auth is only partially configured
    """
    load_dotenv()

    creds = ExchangeCredentials(
        tenant_id=os.getenv("EXCHANGE_TENANT_ID") or os.getenv("MS_GRAPH_TENANT_ID"),
        client_id=os.getenv("EXCHANGE_CLIENT_ID") or os.getenv("MS_GRAPH_CLIENT_ID"),
        organization=os.getenv("EXCHANGE_ORGANIZATION"),
        certificate_thumbprint=os.getenv("EXCHANGE_CERTIFICATE_THUMBPRINT"),
        certificate_path=os.getenv("EXCHANGE_CERTIFICATE_PATH"),
        certificate_password=os.getenv("EXCHANGE_CERTIFICATE_PASSWORD"),
        user_principal_name=os.getenv("EXCHANGE_USER_PRINCIPAL_NAME"),
    )

    if creds.uses_certificate:
        if not creds.client_id or not creds.organization:
            raise ValueError(
                "Exchange certificate auth requires: "
                "EXCHANGE_CLIENT_ID/MS_GRAPH_CLIENT_ID and EXCHANGE_ORGANIZATION"
            )

        if creds.certificate_path and creds.certificate_password is None:
            raise ValueError(
                "EXCHANGE_CERTIFICATE_PASSWORD is required when using EXCHANGE_CERTIFICATE_PATH "
                "(can be empty string for Key Vault generated certs)"
            )

    return creds
