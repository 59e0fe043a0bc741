#!/usr/bin/env python3
"""CLI for running passes by hand.

Runs the same passes as the Celery beat schedule, once, against the
configured database. Useful after a deploy or while debugging a feed.

Usage:
    # One ingestion pass over all upstream sources
    uv run python -m ttc_incidents.cli poll

    # Reconcile one thread category against upstream
    uv run python -m ttc_incidents.cli verify disruptions
    uv run python -m ttc_incidents.cli verify accessibility
    uv run python -m ttc_incidents.cli verify rsz

    # Accuracy check, closure scrape, retention cleanup
    uv run python -m ttc_incidents.cli accuracy
    uv run python -m ttc_incidents.cli maintenance
    uv run python -m ttc_incidents.cli cleanup
"""

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ttc_incidents.core.config import settings
from ttc_incidents.core.database import get_session_factory
from ttc_incidents.core.logging import configure_logging
from ttc_incidents.schemas.admin import VerificationTarget
from ttc_incidents.services.accuracy_service import AccuracyMonitor
from ttc_incidents.services.cleanup_service import CleanupService
from ttc_incidents.services.ingestion_service import IngestionService
from ttc_incidents.services.maintenance_service import MaintenanceService
from ttc_incidents.services.reconciliation_service import ReconciliationVerifier
from ttc_incidents.services.ttc_client import TtcClient, UpstreamError

Handler = Callable[[argparse.Namespace, AsyncSession, TtcClient], Awaitable[int]]


async def cmd_poll(args: argparse.Namespace, session: AsyncSession, client: TtcClient) -> int:
    """Run one ingestion pass and print per-source counts."""
    result = await IngestionService(session, client).run_pass()
    print("✅ Ingestion pass complete")
    for source in result.sources:
        fetched = "" if source.fetched else "  (fetch failed)"
        print(
            f"   {source.source.value:<10} received={source.received} new_threads={source.created_threads} "
            f"new_alerts={source.created_alerts} resolved={source.resolved_threads} "
            f"hidden={source.hidden_threads} failures={len(source.failures)}{fetched}"
        )
    if result.skipped_records:
        print(f"   skipped malformed records: {result.skipped_records}")
    return 0 if result.failure_count == 0 else 1


async def cmd_verify(args: argparse.Namespace, session: AsyncSession, client: TtcClient) -> int:
    """Run one verifier and print its report."""
    report = await ReconciliationVerifier(session, client, VerificationTarget(args.target)).run()
    print(f"{'✅' if report.success else '⚠️'} {report.summary}")
    for label, keys in (
        ("missing", report.missing_in_db),
        ("stale", report.stale_in_db),
        ("hidden but active", report.hidden_but_active),
    ):
        for key in keys:
            print(f"   {label}: {key}")
    return 0 if report.success else 1


async def cmd_accuracy(args: argparse.Namespace, session: AsyncSession, client: TtcClient) -> int:
    """Run one accuracy check."""
    result = await AccuracyMonitor(session, client).run_check()
    print(f"✅ Accuracy check: {result.status.value}")
    print(f"   completeness: {result.completeness}%  ({result.matched_count}/{result.upstream_count})")
    print(f"   precision:    {result.precision}%  ({result.matched_count}/{result.stored_count})")
    for detail in result.missing_alerts:
        print(f"   missing: [{detail.route}] {detail.text}")
    for detail in result.stale_alerts:
        print(f"   stale:   [{detail.route}] {detail.text}")
    return 0


async def cmd_maintenance(args: argparse.Namespace, session: AsyncSession, client: TtcClient) -> int:
    """Scrape scheduled closures."""
    result = await MaintenanceService(session, client).sync()
    print(
        f"✅ Maintenance sync: scraped={result.scraped} upserted={result.upserted} "
        f"deactivated={result.deactivated} skipped={result.skipped}"
    )
    return 0


async def cmd_cleanup(args: argparse.Namespace, session: AsyncSession, client: TtcClient) -> int:
    """Apply the retention rules."""
    result = await CleanupService(session).run()
    print(
        f"✅ Cleanup: deleted_alerts={result.deleted_alerts} deleted_threads={result.deleted_threads} "
        f"unlinked_alerts={result.unlinked_alerts} deactivated_maintenance={result.deactivated_maintenance}"
    )
    return 0


COMMAND_HANDLERS: dict[str, Handler] = {
    "poll": cmd_poll,
    "verify": cmd_verify,
    "accuracy": cmd_accuracy,
    "maintenance": cmd_maintenance,
    "cleanup": cmd_cleanup,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TTC incident engine passes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Pass to run")
    subparsers.add_parser("poll", help="Run one ingestion pass")
    verify_parser = subparsers.add_parser("verify", help="Reconcile one thread category with upstream")
    verify_parser.add_argument("target", choices=[target.value for target in VerificationTarget])
    subparsers.add_parser("accuracy", help="Run one accuracy check")
    subparsers.add_parser("maintenance", help="Scrape scheduled closures")
    subparsers.add_parser("cleanup", help="Apply retention rules")
    return parser


async def run_command(handler: Handler, args: argparse.Namespace) -> int:
    """Run a handler with a session and upstream client, mapping failures to exit code 1."""
    async with get_session_factory()() as session, TtcClient() as client:
        try:
            return await handler(args, session, client)
        except UpstreamError as e:
            print(f"❌ Upstream unavailable: {e}", file=sys.stderr)
        except ValueError as e:
            print(f"❌ Configuration error: {e}", file=sys.stderr)
        except SQLAlchemyError as e:
            print(f"❌ Database error: {e}", file=sys.stderr)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    """
    CLI entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = build_parser().parse_args(argv)
    if not args.command:
        build_parser().print_help()
        return 1

    configure_logging(log_level=settings.LOG_LEVEL)
    return asyncio.run(run_command(COMMAND_HANDLERS[args.command], args))


if __name__ == "__main__":
    sys.exit(main())
