"""Exchange Online PowerShell client.

Executes Exchange Online PowerShell cmdlets in a persistent ``pwsh``
session to find user mailboxes without an online archive and enable
archiving for them.

This uses the official Exchange Online PowerShell module which is fully
supported by Microsoft.

Prerequisites:
1. Install Exchange Online Management module:
   Install-Module -Name ExchangeOnlineManagement

2. For interactive use, an admin account with the
   "Exchange Recipient Administrator" role (or higher), on a host that can
   open a browser. pwsh runs with -NonInteractive, so console prompts are
   unavailable; any sign-in text the module prints is echoed to the log.

3. For app-only (unattended) authentication, you need:
   - Azure AD App Registration with Exchange.ManageAsApp permission
   - A certificate (self-signed or CA-signed) uploaded to the app
   - The certificate installed locally (or accessible as .pfx file)
   - App assigned "Exchange Recipient Administrator" role

References:
- https://learn.microsoft.com/en-us/powershell/exchange/connect-to-exchange-online-powershell
- https://learn.microsoft.com/en-us/powershell/module/exchange/enable-mailbox
"""

import logging
from pathlib import Path

from autoarchive.core.config import get_exchange_credentials
from autoarchive.exchange.models import ZERO_GUID, ExchangeConnection, Mailbox
from autoarchive.exchange.powershell import PowerShellError, PowerShellSession, parse_json_output

logger = logging.getLogger(__name__)

MAILBOX_FIELDS = "UserPrincipalName, DisplayName, ArchiveGuid, RecipientTypeDetails"
CONNECTION_FIELDS = "ConnectionId, State, UserPrincipalName, Organization"


class ExchangeCommandError(PowerShellError):
    """An Exchange Online cmdlet failed."""


def quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string."""
    return "'" + value.replace("'", "''") + "'"


def _as_records(result: dict | list) -> list[dict]:
    """Normalize ConvertTo-Json output (single object vs array) to a list."""
    if isinstance(result, list):
        return [r for r in result if isinstance(r, dict)]
    if isinstance(result, dict) and result and "raw" not in result:
        return [result]
    return []


class ExchangeOnlineClient:
    """Client for Exchange Online PowerShell operations.

    All cmdlets run in one ``PowerShellSession``, so a connection made by
    ``connect()`` is reused by every later call.
    """

    def __init__(
        self,
        user_principal_name: str | None = None,
        certificate_thumbprint: str | None = None,
        certificate_path: Path | str | None = None,
        certificate_password: str | None = None,
        organization: str | None = None,
        session: PowerShellSession | None = None,
    ) -> None:
        """Initialize the Exchange Online client.

        Args:
            user_principal_name: Admin account for interactive sign-in
            certificate_thumbprint: Thumbprint of installed certificate (Windows)
            certificate_path: Path to .pfx certificate file (cross-platform)
            certificate_password: Password for the .pfx file
            organization: The organization domain (overrides env config)
            session: PowerShell session to run cmdlets in
        """
        creds = get_exchange_credentials()
        self.tenant_id = creds.tenant_id
        self.client_id = creds.client_id
        self.organization = organization or creds.organization
        self.user_principal_name = user_principal_name or creds.user_principal_name
        # Use passed params if provided, otherwise use from credentials
        self.certificate_thumbprint = certificate_thumbprint or creds.certificate_thumbprint
        self.certificate_path = certificate_path or creds.certificate_path
        self.certificate_password = certificate_password or creds.certificate_password
        self.session = session or PowerShellSession()

    @property
    def uses_certificate(self) -> bool:
        """Check if app-only certificate authentication is configured."""
        return bool(self.certificate_path or self.certificate_thumbprint)

    def _build_connect_command(self) -> str:
        """Build the Connect-ExchangeOnline command."""
        # Prefer certificate_path over thumbprint (thumbprint is Windows-only)
        if self.certificate_path:
            # For empty password (Key Vault certs), skip the -CertificatePassword param
            if self.certificate_password:
                secure_str = (
                    f"-CertificatePassword (ConvertTo-SecureString "
                    f"-String {quote(self.certificate_password)} -AsPlainText -Force) "
                )
            else:
                secure_str = ""
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {quote(str(self.client_id))} "
                f"-CertificateFilePath {quote(str(self.certificate_path))} "
                f"{secure_str}"
                f"-Organization {quote(str(self.organization))} -ShowBanner:$false"
            )
        elif self.certificate_thumbprint:
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {quote(str(self.client_id))} "
                f"-CertificateThumbprint {quote(self.certificate_thumbprint)} "
                f"-Organization {quote(str(self.organization))} -ShowBanner:$false"
            )
        elif self.user_principal_name:
            # Interactive sign-in with the account pre-filled
            return (
                f"Connect-ExchangeOnline "
                f"-UserPrincipalName {quote(self.user_principal_name)} -ShowBanner:$false"
            )
        return "Connect-ExchangeOnline -ShowBanner:$false"

    def _run_powershell(
        self, command: str, parse_json: bool = True, echo: bool = False
    ) -> dict | list | str:
        """Run a command in the session and return its output.

        Args:
            command: PowerShell command to execute
            parse_json: If True, parse output as JSON
            echo: If True, log output lines as they arrive

        Returns:
            Parsed JSON or raw string output

        Raises:
            ExchangeCommandError: If the command fails
        """
        try:
            output = self.session.run(command, echo=echo)
        except ExchangeCommandError:
            raise
        except PowerShellError as e:
            raise ExchangeCommandError(str(e)) from e

        if parse_json:
            return parse_json_output(output)
        return output.strip()

    async def get_connection_information(self) -> list[ExchangeConnection]:
        """Get the Exchange Online connections active in the session.

        Returns:
            List of connections (empty when not connected)
        """
        result = self._run_powershell(
            f"Get-ConnectionInformation | Select-Object {CONNECTION_FIELDS} "
            "| ConvertTo-Json -EnumsAsStrings"
        )
        return [ExchangeConnection.from_json(r) for r in _as_records(result)]

    async def is_connected(self) -> bool:
        """Check if the session holds a usable connection."""
        connections = await self.get_connection_information()
        return any(c.is_connected for c in connections)

    async def connect(self) -> None:
        """Connect the session to Exchange Online.

        Without a certificate the sign-in is interactive: the module opens a
        browser on the host, or prints sign-in instructions, which are
        echoed to the log as they arrive.

        Raises:
            ExchangeCommandError: If authentication fails
        """
        logger.info(f"Connecting to Exchange Online{self._connect_target()}...")
        command = self._build_connect_command()
        try:
            if self.uses_certificate:
                self._run_powershell(f"{command} *>$null", parse_json=False)
            else:
                self._run_powershell(command, parse_json=False, echo=True)
        except ExchangeCommandError as e:
            raise ExchangeCommandError(f"Failed to connect to Exchange Online: {e}") from e
        logger.info("Connected to Exchange Online")

    def _connect_target(self) -> str:
        if self.uses_certificate:
            return f" as app {self.client_id} ({self.organization})"
        if self.user_principal_name:
            return f" as {self.user_principal_name}"
        return ""

    async def ensure_connected(self) -> bool:
        """Connect to Exchange Online unless a connection is already active.

        Returns:
            True if a new connection was made, False if one was reused
        """
        if await self.is_connected():
            logger.debug("Reusing existing Exchange Online connection")
            return False

        await self.connect()
        return True

    async def get_mailboxes_without_archive(self) -> list[Mailbox]:
        """Get all user mailboxes that have no online archive.

        Returns:
            Mailboxes in the order returned by Exchange (possibly empty)

        Raises:
            ExchangeCommandError: If the query fails
        """
        command = (
            "Get-Mailbox -RecipientTypeDetails UserMailbox "
            f"-Filter \"ArchiveGuid -eq '{ZERO_GUID}'\" -ResultSize Unlimited "
            f"| Select-Object {MAILBOX_FIELDS} | ConvertTo-Json -EnumsAsStrings"
        )
        try:
            result = self._run_powershell(command)
        except ExchangeCommandError as e:
            raise ExchangeCommandError(f"Failed to query mailboxes: {e}") from e

        if isinstance(result, dict) and "raw" in result:
            raise ExchangeCommandError(f"Unexpected Get-Mailbox output: {result['raw'][:200]}")

        return [Mailbox.from_json(r) for r in _as_records(result)]

    async def enable_archive(self, identity: str) -> None:
        """Enable the online archive for a mailbox.

        Args:
            identity: Mailbox UPN, alias, or email address

        Raises:
            ExchangeCommandError: If Enable-Mailbox fails
        """
        self._run_powershell(
            f"Enable-Mailbox -Identity {quote(identity)} -Archive | Out-Null",
            parse_json=False,
        )
        logger.debug(f"Enable-Mailbox -Archive succeeded for {identity}")

    async def set_retention_policy(self, identity: str, policy: str) -> None:
        """Assign a retention policy to a mailbox.

        Args:
            identity: Mailbox UPN, alias, or email address
            policy: Existing retention policy name

        Raises:
            ExchangeCommandError: If Set-Mailbox fails
        """
        self._run_powershell(
            f"Set-Mailbox -Identity {quote(identity)} -RetentionPolicy {quote(policy)}",
            parse_json=False,
        )
        logger.debug(f"Retention policy {policy} applied to {identity}")

    async def disconnect(self) -> None:
        """Disconnect the session from Exchange Online."""
        self._run_powershell("Disconnect-ExchangeOnline -Confirm:$false *>$null", parse_json=False)
        logger.info("Disconnected from Exchange Online")

    async def close(self) -> None:
        """Close the PowerShell session."""
        self.session.close()
