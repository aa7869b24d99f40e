#!/usr/bin/env python3
"""
Import one artist synchronously (same pipeline as POST /artists/import)

Usage:
    python scripts/import_artist.py --spotify-id 4Z8W4fKeB5YxbusRsdQVPb
    python scripts/import_artist.py --ticketmaster-id K8vZ9171ob7 --setlists
    python scripts/import_artist.py --artist-id 3f0c...-... --force
"""

from script_base import ScriptBase, run_script

from config import ImportSettings
from import_orchestrator import ArtistNotFound, ImportFailed, ImportOrchestrator, parse_job_key
from progress_bus import ProgressBus


def main():
    script = ScriptBase(
        name="import_artist",
        description="Import an artist's catalog, top tracks, upcoming shows and (optionally) setlists",
        epilog="Examples:\n"
               "  python scripts/import_artist.py --spotify-id 4Z8W4fKeB5YxbusRsdQVPb\n"
               "  python scripts/import_artist.py --setlistfm-id a74b1b7f-71a5-4011-9441-d0b5e4122711 --setlists"
    )
    script.add_artist_args()
    script.add_force_arg()
    script.add_debug_arg()
    script.parser.add_argument('--setlists', action='store_true', help='Also import setlist history')

    args = script.parse_args()
    try:
        ref = parse_job_key(script.job_key_from_args(args))
    except ValueError as e:
        script.parser.error(str(e))

    script.print_header({"FORCE": args.force, "SETLISTS": args.setlists}, title=f"Import {ref}")

    settings = ImportSettings.from_env()
    orchestrator = ImportOrchestrator.from_settings(ProgressBus(settings.progress_retention_seconds), settings)

    if not args.force:
        try:
            artist = orchestrator.recently_synced_artist(ref)
        except ArtistNotFound as e:
            script.logger.error(str(e))
            return False
        if artist is not None:
            script.logger.info(f"{artist['name']} was synced at {artist['last_full_sync_at']}; "
                               f"use --force to re-import")
            return True

    try:
        summary = orchestrator.run_import(ref, include_setlists=True if args.setlists else None)
    except ImportFailed as e:
        script.logger.error(f"Import failed during {e.stage}: {e.error}")
        return False

    for warning in summary.pop('warnings', []):
        script.logger.warning(warning)
    script.print_summary(summary)
    return True


if __name__ == "__main__":
    run_script(main)
