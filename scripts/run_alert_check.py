#!/usr/bin/env python3
"""Run the scheduled alert check (engagement drop, inactivity).

Usage:
    python scripts/run_alert_check.py
    python scripts/run_alert_check.py --org acme

Run after run_scoring.py. Exits 0 on success, 1 on failure.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sigscore.db.session import SessionLocal
from sigscore.services.alerts.evaluator import run_inactivity_check


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--org", dest="organization_id", default=None)
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        result = run_inactivity_check(db, organization_id=args.organization_id)
        print(
            f"status={result['status']} "
            f"accounts_checked={result['accounts_checked']} "
            f"alerts_fired={result['alerts_fired']}"
        )
        return 0 if result["status"] == "completed" else 1
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
