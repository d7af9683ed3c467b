"""Exchange Online archive management module."""

from autoarchive.exchange.archive import (
    ArchiveEnableResult,
    enable_archives,
    find_mailboxes_without_archive,
)
from autoarchive.exchange.client import ExchangeCommandError, ExchangeOnlineClient
from autoarchive.exchange.models import ZERO_GUID, ExchangeConnection, Mailbox
from autoarchive.exchange.powershell import PowerShellError, PowerShellSession

__all__ = [
    "ZERO_GUID",
    "ArchiveEnableResult",
    "ExchangeCommandError",
    "ExchangeConnection",
    "ExchangeOnlineClient",
    "Mailbox",
    "PowerShellError",
    "PowerShellSession",
    "enable_archives",
    "find_mailboxes_without_archive",
]
