"""Online archive enablement for user mailboxes.

Finds user mailboxes without an online archive and enables archiving for
each one. A failure on one mailbox is logged and the run moves on to the
next; partial completion is reported, never rolled back.
"""

import contextlib
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from autoarchive.exchange.client import ExchangeOnlineClient
from autoarchive.exchange.models import Mailbox

logger = logging.getLogger(__name__)


@dataclass
class ArchiveEnableResult:
    """Result of an archive enablement run."""

    total: int = 0
    modified: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    policy_errors: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def total_modified(self) -> int:
        """Count of mailboxes with archive enabled."""
        return len(self.modified)

    @property
    def total_failed(self) -> int:
        """Count of mailboxes that failed."""
        return len(self.failed)

    @property
    def has_failures(self) -> bool:
        """Check if any mailbox failed."""
        return bool(self.failed or self.policy_errors)


async def find_mailboxes_without_archive(client: ExchangeOnlineClient) -> list[Mailbox]:
    """Query Exchange for user mailboxes with no online archive.

    Each UserPrincipalName appears at most once in the result
    (compared case-insensitively).

    Raises:
        ExchangeCommandError: If the query fails
    """
    mailboxes = []
    seen: set[str] = set()
    for mailbox in await client.get_mailboxes_without_archive():
        upn = mailbox.user_principal_name
        if not upn:
            logger.warning(f"Skipping mailbox without a UserPrincipalName: {mailbox.display_name}")
            continue
        if mailbox.has_archive:
            logger.debug(f"Skipping {upn}: archive already provisioned")
            continue
        if upn.lower() in seen:
            logger.warning(f"Skipping duplicate mailbox {upn}")
            continue
        seen.add(upn.lower())
        mailboxes.append(mailbox)

    logger.debug(f"Found {len(mailboxes)} user mailboxes without an online archive")
    return mailboxes


def _write_result_line(
    log_fh: TextIO | None,
    upn: str,
    archive_enabled: bool | str,
    policy: str | None,
    error: str | None,
) -> None:
    """Append one JSON Lines record for a processed mailbox.

    A failed write is logged and never stops the run.
    """
    if log_fh is None:
        return

    record = {
        "ts": datetime.now(UTC).isoformat(),
        "user": upn,
        "archive_enabled": archive_enabled,
        "policy": policy,
        "error": error,
    }
    try:
        log_fh.write(json.dumps(record) + "\n")
        log_fh.flush()
    except OSError as e:
        logger.warning(f"  Failed to write results log entry for {upn}: {e}")


async def enable_archives(
    client: ExchangeOnlineClient,
    mailboxes: list[Mailbox],
    retention_policy: str | None = None,
    dry_run: bool = False,
    results_log: Path | None = None,
) -> ArchiveEnableResult:
    """Enable the online archive for each mailbox.

    Args:
        client: Connected Exchange Online client
        mailboxes: Mailboxes to process, in order
        retention_policy: Retention policy to apply after enabling (optional)
        dry_run: If True, only log what would be done
        results_log: JSON Lines file receiving one record per mailbox

    Returns:
        ArchiveEnableResult listing modified and failed mailboxes

    Raises:
        OSError: If results_log can't be opened (before any mailbox is changed)
    """
    result = ArchiveEnableResult(total=len(mailboxes), dry_run=dry_run)

    log_cm = results_log.open("a", encoding="utf-8") if results_log else contextlib.nullcontext()
    with log_cm as log_fh:
        for i, mailbox in enumerate(mailboxes, start=1):
            upn = mailbox.user_principal_name
            logger.info(f"({i}/{result.total}) Enabling archive for {upn}...")

            if dry_run:
                logger.info(f"  Would enable archive for {upn}")
                result.modified.append(upn)
                _write_result_line(log_fh, upn, "DRY_RUN", retention_policy, None)
                continue

            try:
                await client.enable_archive(upn)
            except Exception as e:
                logger.warning(f"  Failed to enable archive for {upn}: {e}")
                result.failed[upn] = str(e)
                _write_result_line(log_fh, upn, False, retention_policy, str(e))
                continue

            result.modified.append(upn)
            logger.info(f"  Archive enabled for {upn}")

            policy_error = None
            if retention_policy:
                try:
                    await client.set_retention_policy(upn, retention_policy)
                    logger.info(f"  Retention policy '{retention_policy}' applied to {upn}")
                except Exception as e:
                    policy_error = str(e)
                    logger.warning(
                        f"  Failed to apply retention policy '{retention_policy}' to {upn}: {e}"
                    )
                    result.policy_errors[upn] = policy_error

            _write_result_line(log_fh, upn, True, retention_policy, policy_error)

    return result
