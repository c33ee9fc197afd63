"""One-shot migration of legacy word progress into the canonical per-word map.

    python -m palavras.storage.migrate --db palavras.db [--user-id 3] [--dry-run]
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from palavras.config import DB_PATH
from palavras.errors import PalavrasError
from palavras.learning.reviews import migrate_user_progress
from palavras.logging_config import setup_logging
from palavras.storage.db import Database

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="palavras-migrate", description=__doc__.splitlines()[0])
    parser.add_argument("--db", dest="db_path", default=str(DB_PATH))
    parser.add_argument("--user-id", type=int, default=None, help="migrate a single user (default: all users)")
    parser.add_argument("--dry-run", action="store_true")
    return parser


def run(args: argparse.Namespace) -> dict:
    db = Database(Path(args.db_path))
    db.initialize()
    user_ids = [args.user_id] if args.user_id is not None else db.list_user_ids()
    results: dict[str, dict] = {}
    for user_id in user_ids:
        report = migrate_user_progress(db, user_id=user_id, dry_run=args.dry_run)
        results[str(user_id)] = report.as_dict()
    return {"ok": True, "dry_run": bool(args.dry_run), "users": results}


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    try:
        result = run(args)
    except PalavrasError as exc:
        logger.error("Migration failed: %s", exc)
        return 1
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
