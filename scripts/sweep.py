"""
Runs the scheduled Libris jobs once, for deployments that prefer
system cron over the in-process scheduler.

    python scripts/sweep.py overdue due-soon outbox
"""

import argparse
import logging
from dotenv import load_dotenv

load_dotenv()

from libris.core.scheduler import check_overdue_loans, remind_due_soon, drain_outbox

JOBS = {
    'overdue': check_overdue_loans,
    'due-soon': remind_due_soon,
    'outbox': drain_outbox,
}


def main():
    parser = argparse.ArgumentParser(description="Run Libris background jobs on demand")
    parser.add_argument("jobs", nargs="*", help=f"any of: {', '.join(JOBS)} (default: all)")
    args = parser.parse_args()
    unknown = set(args.jobs) - set(JOBS)
    if unknown:
        parser.error(f"unknown job(s): {', '.join(sorted(unknown))}")
    logging.basicConfig(level=logging.INFO)
    for name in args.jobs or JOBS:
        JOBS[name]()


if __name__ == "__main__":
    main()
