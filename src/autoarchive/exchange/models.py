"""Data models for Exchange Online mailboxes and connections."""

from dataclasses import dataclass

ZERO_GUID = "00000000-0000-0000-0000-000000000000"


@dataclass
class Mailbox:
    """An Exchange Online mailbox as returned by Get-Mailbox."""

    user_principal_name: str
    archive_guid: str = ZERO_GUID
    display_name: str = ""
    recipient_type_details: str = "UserMailbox"

    @property
    def has_archive(self) -> bool:
        """Check if an online archive is provisioned."""
        return bool(self.archive_guid) and self.archive_guid.lower() != ZERO_GUID

    @classmethod
    def from_json(cls, data: dict) -> "Mailbox":
        """Create a Mailbox from Get-Mailbox JSON output."""
        return cls(
            user_principal_name=data.get("UserPrincipalName") or "",
            archive_guid=str(data.get("ArchiveGuid") or ZERO_GUID),
            display_name=data.get("DisplayName") or "",
            recipient_type_details=data.get("RecipientTypeDetails") or "UserMailbox",
        )


@dataclass
class ExchangeConnection:
    """A connection reported by Get-ConnectionInformation."""

    connection_id: str
    state: str
    user_principal_name: str = ""
    organization: str = ""

    @property
    def is_connected(self) -> bool:
        """Check if the connection is usable."""
        return self.state.lower() == "connected"

    @classmethod
    def from_json(cls, data: dict) -> "ExchangeConnection":
        """Create an ExchangeConnection from Get-ConnectionInformation JSON."""
        return cls(
            connection_id=str(data.get("ConnectionId") or ""),
            state=str(data.get("State") or ""),
            user_principal_name=data.get("UserPrincipalName") or "",
            organization=data.get("Organization") or "",
        )
