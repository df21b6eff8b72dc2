#!/usr/bin/env python3
"""Run one importance sweep against the configured storage.

Recomputes importance scores older than MEMORY_SWEEP_RECOMPUTE_AFTER_SECONDS
and demotes memories not accessed for MEMORY_SWEEP_STALE_AFTER_DAYS. Safe
to run from cron alongside a live engine: every write is version-checked.

Usage:
    MEMORY_STORAGE_BACKEND=qdrant MEMORY_QDRANT_URL=http://localhost:6333 \
        python scripts/run_sweep.py [--scope org1] [--stale-after-days 14]
"""

import argparse
import asyncio
import logging
import time
from dataclasses import asdict

from semantic_memory.config import settings
from semantic_memory.services.factory import create_memory_engine

logger = logging.getLogger(__name__)


async def run_sweep(scope: str | None) -> dict:
    engine = await create_memory_engine(settings)
    try:
        report = await engine.run_sweep(scope)
    finally:
        await engine.close()
    return asdict(report)


def main():
    parser = argparse.ArgumentParser(description="Recompute stale importance scores and demote inactive memories")
    parser.add_argument("--scope", default=None, help="Only sweep this scope (default: all scopes)")
    parser.add_argument(
        "--recompute-after-seconds",
        type=float,
        default=None,
        help=f"Override score age threshold (default: {settings.sweep.recompute_after_seconds})",
    )
    parser.add_argument(
        "--stale-after-days",
        type=float,
        default=None,
        help=f"Override inactivity threshold (default: {settings.sweep.stale_after_days})",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    if args.recompute_after_seconds is not None:
        settings.sweep.recompute_after_seconds = args.recompute_after_seconds
    if args.stale_after_days is not None:
        settings.sweep.stale_after_days = args.stale_after_days

    start = time.monotonic()
    stats = asyncio.run(run_sweep(args.scope))
    elapsed = time.monotonic() - start

    logger.info(f"Done in {elapsed:.1f}s: {stats}")


if __name__ == "__main__":
    main()
