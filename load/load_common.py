# -*- coding: utf-8 -*-
"""
Shared helpers for the database maintenance scripts:
- locating and loading .env;
- building the PostgreSQL connection config.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


def load_env_file(search_from: Optional[Path] = None) -> None:
    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(dotenv_path=cwd_env)
        return

    if search_from is None:
        base = Path(__file__).resolve().parent
    else:
        p = Path(search_from).resolve()
        base = p if p.is_dir() else p.parent

    for folder in [base] + list(base.parents):
        env_path = folder / ".env"
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            return

    load_dotenv()


def get_db_config(search_from: Optional[Path] = None) -> Dict[str, Any]:
    load_env_file(search_from=search_from)

    host = os.getenv("POSTGRES_HOST", "localhost")
    port = int(os.getenv("POSTGRES_PORT", "5432"))
    dbname = os.getenv("POSTGRES_DB")
    user = os.getenv("POSTGRES_USER")
    password = os.getenv("POSTGRES_PASSWORD")

    missing = [k for k, v in [("POSTGRES_DB", dbname), ("POSTGRES_USER", user), ("POSTGRES_PASSWORD", password)] if not v]
    if missing:
        raise ValueError(f"Missing environment variables: {', '.join(missing)}")

    return {"host": host, "port": port, "dbname": dbname, "user": user, "password": password}


def count_rows(cur, relation: str) -> int:
    # relation comes from trusted code only (for example "v_thesis_group_rankings").
    cur.execute(f"SELECT COUNT(*) FROM {relation}")
    return int(cur.fetchone()[0])
