#!/usr/bin/env python3
"""Script to show recent certificate renewal runs."""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import RUN_HISTORY_PATH
from renewal.history import RunHistory


def format_entry(entry: dict) -> str:
    """One line per run: when, how it ended, and what was done."""
    when = (entry.get("started_at") or "?")[:19]
    status = "OK" if entry.get("exit_code") == 0 else "FAIL"
    if entry.get("renewal_attempted"):
        action = "renewed" if entry.get("renewal_succeeded") else "renewal failed"
    elif entry.get("decision") == "not_due":
        action = "skipped"
    else:
        action = "-"
    days = entry.get("days_remaining")
    days = f"{days}d" if days is not None else "?"
    line = f"[{status:4s}] {when}  {days:>5s}  {action:15s} {entry.get('termination', '')}"
    if not entry.get("restored", True):
        line += "  RESTORATION INCOMPLETE"
    return line


def main():
    parser = argparse.ArgumentParser(
        description="Show recent certificate renewal runs"
    )
    parser.add_argument(
        "--path", default=RUN_HISTORY_PATH, help="Run history file"
    )
    parser.add_argument(
        "--limit", type=int, default=20, help="Number of runs to show"
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args()
    entries = RunHistory(args.path).list_all(limit=args.limit)

    if args.json:
        print(json.dumps(entries, indent=2))
        return

    if not entries:
        print("No runs recorded.")
        return

    for entry in entries:
        print(format_entry(entry))
        for error in entry.get("errors", []) + entry.get("closing_errors", []):
            print(f"         {error}")


if __name__ == "__main__":
    main()
