"""
Maintenance commands.

    python -m src.cli sweep-orphans [--dry-run]
    python -m src.cli retry-blobs [--limit N]
"""
import argparse
import asyncio
import logging
from typing import Optional

from src.config import settings
from src.infrastructure.database import AsyncSessionLocal
from src.infrastructure.blob_store import get_blob_store
from src.application.blob_cleanup import retry_pending_blob_deletions
from src.application.orphan_sweeper import OrphanSweeper


async def _sweep_orphans(dry_run: bool, policy: Optional[str]) -> int:
    async with AsyncSessionLocal() as db:
        sweeper = OrphanSweeper(db, blob_store=get_blob_store(), policy=policy)
        report = await sweeper.sweep(dry_run=dry_run)

    print(f"Policy: {report.policy} (cutoff {report.cutoff.isoformat()})")
    print(f"Orphaned locations: {len(report.candidates)} {report.candidates}")
    if report.tombstones_pruned:
        print(f"Pruned {report.tombstones_pruned} expired delete tombstone(s)")
    if report.dry_run or report.policy == "retain":
        print("No locations deleted.")
        return 0

    print(f"Deleted: {len(report.deleted)} location(s), {report.photo_count} photo(s), {report.blob_count} blob(s)")
    if report.skipped:
        print(f"Skipped: {report.skipped}")
    if report.failed_blob_ids:
        print(f"Blob deletions queued for retry: {len(report.failed_blob_ids)}")
    return 0


async def _retry_blobs(limit: Optional[int]) -> int:
    async with AsyncSessionLocal() as db:
        report = await retry_pending_blob_deletions(db, get_blob_store(), limit=limit)

    print(f"Retried {report.attempted} blob deletion(s): {report.deleted} deleted")
    if report.still_failing:
        print(f"Still failing: {', '.join(report.still_failing)}")
        return 1
    return 0


def cmd_sweep_orphans(args: argparse.Namespace) -> int:
    return asyncio.run(_sweep_orphans(args.dry_run, args.policy))


def cmd_retry_blobs(args: argparse.Namespace) -> int:
    return asyncio.run(_retry_blobs(args.limit))


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(prog="python -m src.cli")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sweep = sub.add_parser("sweep-orphans", help="Delete (or list) locations nobody has saved")
    p_sweep.add_argument("--dry-run", action="store_true")
    p_sweep.add_argument("--policy", choices=["retain", "sweep"], default=None,
                         help="Override ORPHAN_POLICY for this run")
    p_sweep.set_defaults(func=cmd_sweep_orphans)

    p_retry = sub.add_parser("retry-blobs", help="Retry blob deletions that failed earlier")
    p_retry.add_argument("--limit", type=int, default=None)
    p_retry.set_defaults(func=cmd_retry_blobs)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
