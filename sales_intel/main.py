"""CLI entry point: run one intelligence analysis synchronously.

The job goes through the same store, runner and retry wrapper as the API
and the final job record is printed as JSON.  For production, use the
FastAPI server (sales_intel/server.py).

Usage:
    python -m sales_intel.main deal 123 --name "Acme Renewal"
    python -m sales_intel.main company 456 --debug
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from sales_intel.context import ENTITY_TYPES

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Always keep our own logger at INFO minimum so job progress shows
    logging.getLogger("sales_intel").setLevel(logging.DEBUG if debug else logging.INFO)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sales intelligence agent CLI")
    parser.add_argument("entity_type", choices=ENTITY_TYPES, help="Kind of CRM entity to analyze")
    parser.add_argument("entity_id", help="CRM object id")
    parser.add_argument("--name", default="", help="Display name, used if the CRM has none")
    parser.add_argument(
        "--no-retry", action="store_true",
        help="Fail on the first rate-limit error instead of backing off",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run one job to a terminal status; exit code 0 only if it completed."""
    args = _parse_args(argv)
    load_dotenv()
    _configure_logging(debug=args.debug)

    # Imported late so ``--help`` works without credentials configured.
    from sales_intel.jobs.service import JobService
    from sales_intel.services.metrics import metrics
    from sales_intel.wiring import build_job_stack

    stack = build_job_stack()
    run = stack.runner.run if args.no_retry else stack.retrying_runner.run
    pending: list[str] = []
    service = JobService(stack.store, pending.append)

    try:
        job = service.create_job(args.entity_type, args.entity_id, args.name)
        logger.info("Running job %s for %s %s", job.id, args.entity_type, args.entity_id)
        for job_id in pending:
            run(job_id)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    finally:
        metrics.flush()

    record = stack.store.get(job.id).to_dict()
    print(json.dumps(record, indent=2, default=str))
    return 0 if record["status"] == "complete" else 1


if __name__ == "__main__":
    sys.exit(main())
