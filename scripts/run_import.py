"""Run an import job to completion in-process, one slice after another.

Usage:
    python scripts/run_import.py <job_id>
"""

from __future__ import annotations

import argparse

from efdloader.core.config import AppSettings
from efdloader.core.logging import configure_logging
from efdloader.ingest.scheduler import create_scheduler
from efdloader.orchestration.dispatchers import LocalSliceDispatcher


def run(job_id: str, settings: AppSettings | None = None, max_slices: int | None = None) -> None:
    settings = settings or AppSettings()
    dispatcher = LocalSliceDispatcher()
    scheduler = create_scheduler(settings, dispatcher)

    dispatcher.dispatch(job_id)
    ran = dispatcher.drain(scheduler.process, max_slices=max_slices)

    job = scheduler.job_store.get_job(job_id)
    status = job.status if job is not None else "missing"
    print(f"Ran {ran} slice(s); job {job_id} is {status}")
    if job is not None and job.error_message:
        print(f"  {job.error_message}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Drive an EFD import job locally")
    parser.add_argument("job_id", help="Job to process")
    parser.add_argument("--max-slices", type=int, default=None, help="Stop after this many slices")
    args = parser.parse_args()

    settings = AppSettings()
    configure_logging(settings.log_level)
    run(args.job_id, settings, max_slices=args.max_slices)


if __name__ == "__main__":
    main()
