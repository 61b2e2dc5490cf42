#!/usr/bin/env python3
"""
Process the match queue

Classifies pending liked tracks album by album with the LLM and saves the
classical ones into the catalog.

Usage:
    python scripts/process_match_queue.py
    python scripts/process_match_queue.py --limit 20 --dry-run
"""

from script_base import ScriptBase, run_script

import config
import spotify_auth
from match_queue_processor import MatchQueueProcessor
from spotify_client import SpotifyClient


def main():
    script = ScriptBase(
        name="process_match_queue",
        description="Classify pending match queue tracks and save them to the catalog",
        epilog="Examples:\n  python process_match_queue.py --limit 20 --dry-run"
    )
    script.add_dry_run_arg()
    script.add_debug_arg()
    script.add_limit_arg(default=100)
    script.add_user_arg(default=config.ADMIN_USERNAME)
    script.parser.add_argument(
        '--album-delay',
        type=float,
        default=0.5,
        help='Seconds to pause between albums (default: 0.5)'
    )

    args = script.parse_args()

    script.print_header({"DRY RUN": args.dry_run})

    user = spotify_auth.find_user_by_name(args.user)
    if not user:
        script.logger.error(f"User not found: {args.user} (sign in through the web app first)")
        return False

    client = SpotifyClient(spotify_auth.get_access_token(user['id']), logger=script.logger)
    processor = MatchQueueProcessor(
        client,
        dry_run=args.dry_run,
        album_delay=args.album_delay,
        logger=script.logger
    )

    stats = processor.run(limit=args.limit)

    script.print_summary(stats)
    return True


if __name__ == "__main__":
    run_script(main)
