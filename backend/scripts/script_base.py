#!/usr/bin/env python3
"""
Script Base - Common infrastructure for CLI scripts

Provides a base class that handles:
- Path setup for imports from parent directory
- .env loading
- Logging configuration (stdout + file)
- Argument parsing with common options
- Header/summary printing with consistent formatting
- Exception handling and exit codes

Usage:
    from script_base import ScriptBase, run_script

    def main():
        script = ScriptBase(
            name="my_script",
            description="Does something useful",
            epilog="Examples:\\n  python my_script.py --spotify-id 4Z8W4fKeB5YxbusRsdQVPb"
        )

        script.add_artist_args()    # --artist-id/--spotify-id/--ticketmaster-id/--setlistfm-id
        script.add_dry_run_arg()    # --dry-run
        script.add_debug_arg()      # --debug

        args = script.parse_args()
        script.print_header({"DRY RUN": args.dry_run})

        result = do_something(args)

        script.print_summary(result['stats'])
        return result['success']

    if __name__ == "__main__":
        run_script(main)
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Callable, Optional

# Add parent directory to path for imports (do this immediately)
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()


# --flag -> job key prefix used by the import orchestrator
ARTIST_ID_ARGS = {
    'artist_id': 'artist',
    'spotify_id': 'spotify',
    'ticketmaster_id': 'ticketmaster',
    'setlistfm_id': 'setlistfm',
}


class ScriptBase:
    """Base class providing common CLI script infrastructure."""

    def __init__(
        self,
        name: str,
        description: str,
        epilog: str = "",
        log_dir: Optional[Path] = None
    ):
        """
        Initialize the script base.

        Args:
            name: Script name (used for log file naming)
            description: Script description for --help
            epilog: Additional help text (examples, etc.)
            log_dir: Directory for log files (default: scripts/log/)
        """
        self.name = name
        self.log_dir = log_dir or Path(__file__).parent / 'log'
        self.logger = self._setup_logging()
        self.parser = self._create_parser(description, epilog)

    def _setup_logging(self) -> logging.Logger:
        """Configure logging with stdout and file handlers."""
        self.log_dir.mkdir(exist_ok=True)

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(sys.stdout),
                logging.FileHandler(self.log_dir / f'{self.name}.log')
            ]
        )
        return logging.getLogger(self.name)

    def _create_parser(self, description: str, epilog: str) -> argparse.ArgumentParser:
        """Create the argument parser."""
        return argparse.ArgumentParser(
            description=description,
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=epilog
        )

    # =========================================================================
    # Common Argument Groups
    # =========================================================================

    def add_artist_args(self, required: bool = True):
        """
        Add mutually exclusive artist identifier arguments.

        Args:
            required: Whether one identifier is required

        Returns:
            The mutually exclusive group
        """
        group = self.parser.add_mutually_exclusive_group(required=required)
        group.add_argument('--artist-id', help='Internal artist ID (UUID)')
        group.add_argument('--spotify-id', help='Spotify artist ID')
        group.add_argument('--ticketmaster-id', help='Ticketmaster attraction ID')
        group.add_argument('--setlistfm-id', help='setlist.fm artist MBID')
        return group

    def add_dry_run_arg(self):
        """Add --dry-run argument."""
        self.parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would happen without making changes'
        )

    def add_debug_arg(self):
        """Add --debug argument."""
        self.parser.add_argument(
            '--debug',
            action='store_true',
            help='Enable debug logging'
        )

    def add_force_arg(self):
        """Add --force argument."""
        self.parser.add_argument(
            '--force',
            action='store_true',
            help='Ignore the re-sync cooldown'
        )

    # =========================================================================
    # Argument Parsing
    # =========================================================================

    def parse_args(self, args=None) -> argparse.Namespace:
        """
        Parse command line arguments and apply common settings.

        Args:
            args: Arguments to parse (default: sys.argv)

        Returns:
            Parsed arguments namespace
        """
        parsed = self.parser.parse_args(args)

        # Apply debug logging if requested
        if getattr(parsed, 'debug', False):
            logging.getLogger().setLevel(logging.DEBUG)
            self.logger.debug("Debug logging enabled")

        return parsed

    def job_key_from_args(self, args: argparse.Namespace) -> str:
        """The orchestrator job key for whichever artist identifier was given."""
        for attr, prefix in ARTIST_ID_ARGS.items():
            value = getattr(args, attr, None)
            if value:
                return f"{prefix}:{value}"
        self.parser.error("an artist identifier is required")

    # =========================================================================
    # Output Formatting
    # =========================================================================

    def print_header(self, modes: dict = None, title: str = None):
        """
        Print a formatted header with optional mode indicators.

        Args:
            modes: Dict of mode_name -> is_active (e.g., {"DRY RUN": True})
            title: Custom title (default: script name formatted)
        """
        title = title or self.name.replace('_', ' ').title()

        self.logger.info("=" * 80)
        self.logger.info(title)
        self.logger.info("=" * 80)

        if modes:
            for mode_name, is_active in modes.items():
                if is_active:
                    self.logger.info(f"*** {mode_name} MODE ***")

        self.logger.info("")

    def print_summary(self, stats: dict, title: str = "SUMMARY"):
        """
        Print a formatted summary of operation statistics.

        Args:
            stats: Dict of stat_name -> value
            title: Summary section title
        """
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(title)
        self.logger.info("=" * 80)

        if stats:
            # Find max key length for alignment
            max_key_len = max(len(str(k)) for k in stats.keys())

            for key, value in stats.items():
                display_key = str(key).replace('_', ' ').replace('-', ' ').title()
                self.logger.info(f"{display_key:<{max_key_len + 5}} {value}")

        self.logger.info("=" * 80)


def run_script(main_func: Callable[[], bool]):
    """
    Run a script's main function with standard exception handling.

    Args:
        main_func: Function that returns True on success, False on failure
    """
    try:
        success = main_func()
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\nCancelled by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)
