#!/usr/bin/env python3
"""
Move shows through their time-based lifecycle (run from cron)

    upcoming -> in-progress -> completed, stale upcoming -> cancelled

Usage:
    python scripts/update_show_statuses.py
    python scripts/update_show_statuses.py --dry-run
"""

from script_base import ScriptBase, run_script

from catalog_db import CatalogRepository
from show_lifecycle import sweep_show_statuses


def main():
    script = ScriptBase(
        name="update_show_statuses",
        description="Apply time-based show status transitions",
        epilog="Examples:\n  python scripts/update_show_statuses.py --dry-run"
    )
    script.add_dry_run_arg()
    script.add_debug_arg()
    args = script.parse_args()

    script.print_header({"DRY RUN": args.dry_run})

    stats = sweep_show_statuses(CatalogRepository(), dry_run=args.dry_run)

    script.print_summary(stats)
    return True


if __name__ == "__main__":
    run_script(main)
