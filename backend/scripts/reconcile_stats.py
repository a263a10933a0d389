#!/usr/bin/env python3
"""Rebuild the global statistics from the ledgers and report drift."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from strikerate.core.database import SessionLocal
from strikerate.services.stats import reconcile_stats


def main() -> int:
    parser = argparse.ArgumentParser(description="Reconcile the stats row against matches, predictions and users.")
    parser.add_argument("--apply", action="store_true", help="Overwrite the stats row when drift is found.")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        result = reconcile_stats(db, apply=bool(args.apply))
        print(
            json.dumps(
                {
                    "status": "applied" if result["applied"] else ("drift" if result["drift"] else "clean"),
                    "drift": result["drift"],
                    "expected": result["expected"],
                },
                default=str,
                indent=2,
            )
        )
        return 1 if result["drift"] and not result["applied"] else 0
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
