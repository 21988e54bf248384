# backend/tools/db_init.py
# Run from the repo root or backend/. Uses backend/.env (DATABASE_URL or DB_* parts).

from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend import bootstrap

bootstrap(__file__)

from sqlalchemy import inspect as sa_inspect

from auditlog.db import dispose_engine, get_engine
from auditlog.logging_setup import start_log
from auditlog.schema import AUDIT_LOG_TABLE, create_schema, drop_schema


def describe(engine) -> None:
    insp = sa_inspect(engine)
    if not insp.has_table(AUDIT_LOG_TABLE):
        print(f"{AUDIT_LOG_TABLE}: missing")
        return
    print(f"\n{AUDIT_LOG_TABLE}")
    print("-" * len(AUDIT_LOG_TABLE))
    for c in insp.get_columns(AUDIT_LOG_TABLE):
        nullable = "YES" if c.get("nullable", True) else "NO"
        print(f"  {c['name']:<16} {str(c['type']):<24} {nullable}")
    indexes = insp.get_indexes(AUDIT_LOG_TABLE)
    if indexes:
        print("\nindexes:")
        for ix in indexes:
            print(f"  - {ix['name']}: {', '.join(str(col) for col in ix['column_names'] if col)}")


def main() -> int:
    ap = argparse.ArgumentParser(description="Create the audit_logs table and its search indexes")
    ap.add_argument("--drop", action="store_true", help="Drop audit_logs first (destroys data)")
    ap.add_argument("--describe", action="store_true", help="Only print the current table layout")
    args = ap.parse_args()

    start_log(app_name="db_init", to_console=True)
    engine = get_engine()
    try:
        if not args.describe:
            if args.drop:
                drop_schema(engine)
            # search_vector uses text_search_config from appconfig.json, same as the queries
            create_schema(engine)
        describe(engine)
    finally:
        dispose_engine()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
