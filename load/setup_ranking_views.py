# -*- coding: utf-8 -*-
"""
Creates the precomputed ranking views.

Runs db/sql/ranking_views.sql against PostgreSQL. The application tables
must already exist (they are created on app startup).
"""

from __future__ import annotations

import argparse
from pathlib import Path

import psycopg2

from load_common import count_rows, get_db_config

VIEW_NAME = "v_thesis_group_rankings"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or replace the thesis group ranking view.")
    parser.add_argument(
        "--sql",
        default=str(Path(__file__).resolve().parents[1] / "db" / "sql" / "ranking_views.sql"),
        help="Path to the view definition script.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Apply, report the row count, then roll back.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    script_path = Path(args.sql)
    if not script_path.exists():
        raise FileNotFoundError(f"SQL file not found: {script_path}")

    sql_text = script_path.read_text(encoding="utf-8")
    db_cfg = get_db_config(search_from=Path(__file__))

    with psycopg2.connect(**db_cfg) as conn:
        with conn.cursor() as cur:
            cur.execute(sql_text)
            rows = count_rows(cur, VIEW_NAME)
        if args.dry_run:
            conn.rollback()
        else:
            conn.commit()

    mode = "checked (rolled back)" if args.dry_run else "applied"
    print(f"Ranking view {mode}: {script_path} ({VIEW_NAME}: {rows} rows)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
