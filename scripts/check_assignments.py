#!/usr/bin/env python3
"""
Teamboard - Assignment Ledger Consistency Check
Scans the card assignment ledger for drift against the cards' assignee
pointers and reports members holding more than one unfinished card.

Usage:
    python scripts/check_assignments.py
    python scripts/check_assignments.py --fix
    python scripts/check_assignments.py --json

Exits 1 when problems were found and --fix was not given.
"""

import sys
import json
import asyncio
import argparse
import logging
from dataclasses import asdict

from database import get_db_context, close_db
from services.assignments import check_consistency, repair_consistency


async def run(fix: bool) -> dict:
    async with get_db_context() as db:
        report = await check_consistency(db)
        out = {"report": asdict(report), "clean": report.is_clean}
        if fix and not report.is_clean:
            out["repair"] = asdict(await repair_consistency(db))
    await close_db()
    return out


def _print_summary(out: dict) -> None:
    report = out["report"]
    print("Assignment ledger check")
    print(f"   Duplicate active rows: {len(report['duplicate_active'])}")
    print(f"   Pointer mismatches:    {len(report['pointer_mismatches'])}")
    print(f"   Orphaned active rows:  {len(report['orphaned_active'])}")
    print(f"   Overloaded members:    {len(report['overloaded_members'])}")
    for member in report["overloaded_members"]:
        print(f"     - user {member['user_id']} in project {member['project_id']}: {member['unfinished_count']} unfinished")

    repair = out.get("repair")
    if repair:
        print("Repair applied")
        print(f"   Deactivated:      {repair['deactivated']}")
        print(f"   Pointers synced:  {repair['pointers_synced']}")
        print(f"   Backfilled:       {repair['backfilled']}")
        print(f"   Pointers cleared: {repair['pointers_cleared']}")
    elif out["clean"]:
        print("Ledger is consistent")


# ── CLI ─────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="Teamboard assignment ledger consistency check")
    parser.add_argument("--fix", action="store_true", help="Repair drift instead of only reporting it")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    out = asyncio.run(run(args.fix))

    if args.json:
        print(json.dumps(out, indent=2, default=str))
    else:
        _print_summary(out)

    if not out["clean"] and "repair" not in out:
        sys.exit(1)


if __name__ == "__main__":
    main()
