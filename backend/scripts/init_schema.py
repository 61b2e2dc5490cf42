#!/usr/bin/env python3
"""
Create the catalog tables

Applies backend/sql/schema.sql. Every statement is IF NOT EXISTS, so the
script can be re-run against an existing database.

Usage:
    python scripts/init_schema.py
"""

from script_base import ScriptBase, run_script

import db_utils


def main():
    script = ScriptBase(
        name="init_schema",
        description="Apply the catalog schema to the configured database",
    )
    script.add_debug_arg()
    script.parse_args()

    script.print_header()

    if not db_utils.test_connection():
        return False

    executed = db_utils.apply_schema()
    script.print_summary({'statements_executed': executed})
    return True


if __name__ == "__main__":
    run_script(main)
