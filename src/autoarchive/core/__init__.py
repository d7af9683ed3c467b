"""Core utilities for Exchange Online archive automation."""

from autoarchive.core.config import (
    ExchangeCredentials,
    get_exchange_credentials,
)

__all__ = [
    "ExchangeCredentials",
    "get_exchange_credentials",
]
