#!/usr/bin/env python3
"""Run the scheduled scoring job locally or from cron.

Usage:
    python scripts/run_scoring.py
    python scripts/run_scoring.py --org acme

Scores every account with signals in the last SCORE_WINDOW_DAYS days.
Exits 0 on success, 1 on failure.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sigscore.db.session import SessionLocal
from sigscore.services.scoring.scheduler import run_scoring_job


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--org", dest="organization_id", default=None)
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        result = run_scoring_job(db, organization_id=args.organization_id)
        print(
            f"status={result['status']} "
            f"job_run_id={result['job_run_id']} "
            f"accounts_scored={result['accounts_scored']} "
            f"accounts_failed={result['accounts_failed']}"
        )
        if result.get("error"):
            print(f"error={result['error']}", file=sys.stderr)
        return 0 if result["status"] == "completed" else 1
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
