#!/usr/bin/env python3
import argparse
import os

os.environ.setdefault("BOOTSTRAP_JOBS_ON_IMPORT", "0")

from app import app  # noqa: E402
from background_jobs import sweep_lecture_statuses, sweep_work_item_statuses  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Recompute quiz, assignment and lecture statuses once.")
    parser.add_argument(
        "--only",
        choices=["work-items", "lectures"],
        help="Run a single sweep instead of both.",
    )
    args = parser.parse_args()

    failed = 0
    with app.app_context():
        if args.only in (None, "work-items"):
            summary = sweep_work_item_statuses()
            print(
                f"Work items: {summary['checked']} checked, {summary['updated']} updated, "
                f"{summary['expired_attempts']} attempts auto-submitted, {summary['failed']} failed"
            )
            failed += summary["failed"]
        if args.only in (None, "lectures"):
            summary = sweep_lecture_statuses()
            print(f"Lectures: {summary['checked']} checked, {summary['updated']} updated, {summary['failed']} failed")
            failed += summary["failed"]
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
