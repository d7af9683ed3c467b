"""CLI script to enable online archives for user mailboxes lacking one."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from autoarchive.exchange.archive import (
    ArchiveEnableResult,
    enable_archives,
    find_mailboxes_without_archive,
)
from autoarchive.exchange.client import ExchangeOnlineClient
from autoarchive.exchange.powershell import PowerShellSession
from autoarchive.utils.config import get_settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def print_result(result: ArchiveEnableResult) -> None:
    """Print the run summary."""
    logger.info("")
    logger.info("=" * 50)

    if result.modified:
        action = "Would enable" if result.dry_run else "Enabled"
        logger.info(f"{action} archive for {result.total_modified} mailbox(es):")
        for upn in result.modified:
            logger.info(f"  {upn}")

    if result.has_failures:
        if result.failed:
            logger.warning(f"Failed to enable archive for {result.total_failed} mailbox(es):")
            for upn, error in result.failed.items():
                logger.warning(f"  {upn}: {error}")

        if result.policy_errors:
            logger.warning(
                f"Retention policy not applied to {len(result.policy_errors)} mailbox(es):"
            )
            for upn, error in result.policy_errors.items():
                logger.warning(f"  {upn}: {error}")

    logger.info("Archive enablement complete")


async def run_archive_enable(
    user_principal_name: str | None = None,
    disconnect: bool | None = None,
    dry_run: bool = False,
    retention_policy: str | None = None,
    results_log: Path | None = None,
) -> int:
    """Connect, find mailboxes without an archive, and enable archiving.

    Args:
        user_principal_name: Admin account for interactive sign-in
        disconnect: Disconnect from Exchange Online when done
            (defaults to EXCHANGE_DISCONNECT_WHEN_DONE)
        dry_run: If True, don't make changes
        retention_policy: Retention policy to apply after enabling
        results_log: JSON Lines file receiving one record per mailbox

    Returns:
        Exit code (0 when the run completes, 1 on a fatal error)
    """
    settings = get_settings()
    if disconnect is None:
        disconnect = settings.exchange_disconnect_when_done
    if not retention_policy and settings.has_retention_policy:
        retention_policy = settings.archive_retention_policy
    results_log = results_log or settings.archive_results_log

    try:
        client = ExchangeOnlineClient(
            user_principal_name=user_principal_name,
            session=PowerShellSession(executable=settings.powershell_executable),
        )
    except ValueError as e:
        logger.error(f"Invalid Exchange configuration: {e}")
        return 1

    connected = False
    try:
        await client.ensure_connected()
        connected = True

        mailboxes = await find_mailboxes_without_archive(client)
        if not mailboxes:
            logger.info("All user mailboxes already have an online archive")
            return 0

        logger.info(f"Found {len(mailboxes)} user mailbox(es) without an online archive")
        if dry_run:
            logger.info("DRY RUN - no changes will be made")

        result = await enable_archives(
            client,
            mailboxes,
            retention_policy=retention_policy,
            dry_run=dry_run,
            results_log=results_log,
        )
        print_result(result)
        return 0

    except Exception as e:
        logger.error(f"Archive enablement failed: {e}")
        return 1

    finally:
        if disconnect and connected:
            try:
                await client.disconnect()
            except Exception as e:
                logger.warning(f"Failed to disconnect from Exchange Online: {e}")
        await client.close()


def main():
    """CLI entry point for enable-archives."""
    parser = argparse.ArgumentParser(
        description="Enable Exchange Online archives for user mailboxes that lack one",
    )
    parser.add_argument(
        "--upn",
        dest="user_principal_name",
        help="Admin account for interactive sign-in (default: EXCHANGE_USER_PRINCIPAL_NAME)",
    )
    parser.add_argument(
        "--disconnect",
        action="store_true",
        default=None,
        help="Disconnect from Exchange Online when done",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which mailboxes would be changed without changing them",
    )
    parser.add_argument(
        "--retention-policy",
        help="Existing retention policy to apply to each newly archived mailbox",
    )
    parser.add_argument(
        "--results-log",
        type=Path,
        help="Append one JSON line per processed mailbox to this file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug output",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    exit_code = asyncio.run(
        run_archive_enable(
            user_principal_name=args.user_principal_name,
            disconnect=args.disconnect,
            dry_run=args.dry_run,
            retention_policy=args.retention_policy,
            results_log=args.results_log,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
