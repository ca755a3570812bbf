"""Sync entrypoint - Standalone script for running sync jobs.

Usage:
    python -m rxwatch.sync_entrypoint               # Run all configured jobs
    python -m rxwatch.sync_entrypoint dsc           # Sync shortage reports
    python -m rxwatch.sync_entrypoint dpd           # Sync the drug catalog
    python -m rxwatch.sync_entrypoint dpd --force   # Skip DPD change detection

A failed run is retried once after SYNC_RETRY_DELAY_SECONDS, just like a
scheduled one. The exit code is 1 if the last attempt of any job failed.
"""

import asyncio
import sys
from typing import Dict, List

from rxwatch.core.db import SessionLocal
from rxwatch.core.logging import get_logger
from rxwatch.services.orchestrator import JobResult, JobStatus
from rxwatch.services.pipeline import build_orchestrator

logger = get_logger("sync_entrypoint")


async def run_jobs(jobs: List[str], force: bool = False) -> Dict[str, JobResult]:
    """Run the given jobs (all configured ones if empty) one after another."""
    orchestrator = build_orchestrator(SessionLocal, force=force)
    try:
        for job in jobs:
            orchestrator.get_task(job)

        results: Dict[str, JobResult] = {}
        for job in jobs or orchestrator.job_ids:
            results[job] = await orchestrator.trigger(job)

        retried = await orchestrator.wait_for_retries()
        results.update(retried)
        return results
    finally:
        await orchestrator.shutdown()


def main():
    """Main entry point for sync jobs."""
    args = sys.argv[1:]
    force = "--force" in args
    jobs = [arg for arg in args if not arg.startswith("--")]

    logger.info("Sync starting...")
    try:
        results = asyncio.run(run_jobs(jobs, force=force))
    except ValueError as exc:
        logger.error(f"{exc}. Usage: python -m rxwatch.sync_entrypoint [dsc|dpd] [--force]")
        sys.exit(1)

    for job, result in results.items():
        logger.info(f"{job}: {result.status.value} {result.stats or result.error or ''}")

    if any(result.status == JobStatus.FAILED for result in results.values()):
        sys.exit(1)

    return results


if __name__ == "__main__":
    main()
