#!/usr/bin/env python3
"""
Shared plumbing for the scripts in this directory

Importing this module puts backend/ on sys.path and loads .env, so a
script can import the backend modules directly afterwards.

Usage:
    from script_base import ScriptBase, run_script

    def main():
        script = ScriptBase(name="process_match_queue", description="...")
        script.add_dry_run_arg()
        args = script.parse_args()
        script.print_header({"DRY RUN": args.dry_run})
        ...
        script.print_summary(stats)
        return True

    if __name__ == "__main__":
        run_script(main)
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Callable, Optional

# backend/ must be importable before anything below runs
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

RULE = "=" * 80


class ScriptBase:
    """Logging, arguments and report formatting for one CLI script."""

    def __init__(self, name: str, description: str, epilog: str = "", log_dir: Optional[Path] = None):
        """
        Args:
            name: Script name; also names the log file
            description: --help text
            epilog: Extra --help text, usually examples
            log_dir: Where the log file goes (default: scripts/log/)
        """
        self.name = name
        self.log_dir = log_dir or Path(__file__).parent / 'log'
        self.logger = self._setup_logging()
        self.parser = argparse.ArgumentParser(
            description=description,
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=epilog
        )

    def _setup_logging(self) -> logging.Logger:
        """Log to stdout and to <log_dir>/<name>.log"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(sys.stdout),
                logging.FileHandler(self.log_dir / f'{self.name}.log')
            ]
        )
        return logging.getLogger(self.name)

    # =========================================================================
    # Arguments
    # =========================================================================

    def add_dry_run_arg(self):
        self.parser.add_argument('--dry-run', action='store_true',
                                 help='Report what would change without writing anything')

    def add_debug_arg(self):
        self.parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    def add_limit_arg(self, default: int = 100):
        self.parser.add_argument('--limit', type=int, default=default,
                                 help=f'Maximum number of items to process (default: {default})')

    def add_user_arg(self, default: str):
        """--user: the signed-in user whose Spotify token the script borrows"""
        self.parser.add_argument('--user', default=default,
                                 help=f'Name of the user to act as (default: {default})')

    def parse_args(self, args=None) -> argparse.Namespace:
        parsed = self.parser.parse_args(args)
        if getattr(parsed, 'debug', False):
            logging.getLogger().setLevel(logging.DEBUG)
        return parsed

    # =========================================================================
    # Report
    # =========================================================================

    def print_header(self, modes: Optional[dict] = None):
        """
        Args:
            modes: {"DRY RUN": True, ...}; active modes are called out
        """
        self.logger.info(RULE)
        self.logger.info(self.name.replace('_', ' ').title())
        self.logger.info(RULE)
        for mode_name, active in (modes or {}).items():
            if active:
                self.logger.info(f"*** {mode_name} MODE ***")
        self.logger.info("")

    def print_summary(self, stats: dict):
        """One aligned line per stat"""
        self.logger.info("")
        self.logger.info(RULE)
        self.logger.info("SUMMARY")
        self.logger.info(RULE)
        width = max((len(k) for k in stats), default=0) + 5
        for key, value in stats.items():
            self.logger.info(f"{key.replace('_', ' ').title():<{width}} {value}")
        self.logger.info(RULE)


def run_script(main_func: Callable[[], bool]):
    """Exit 0 when main_func returns True, 1 on False or on any error"""
    try:
        ok = main_func()
    except KeyboardInterrupt:
        print("\nCancelled by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(0 if ok else 1)
