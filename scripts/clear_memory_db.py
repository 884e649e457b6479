#!/usr/bin/env python3
"""
Module: scripts/clear_memory_db.py
Summary: Danger tool that deletes the memory store and every journal file next to it.
Inputs: HAL_MEMORY_DB env, CLI flags
Outputs: Removes <db>, <db>-wal, <db>-shm, <db>-journal and reopens an empty store
Related: halcore/database/sqlite/memory_client.py

Usage:
  python scripts/clear_memory_db.py --dry-run
  python scripts/clear_memory_db.py --yes
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from halcore.database.sqlite.memory_client import SQLiteMemoryClient, resolve_memory_config  # noqa: E402
from halcore.runtime.memory.memory_store import SQLiteContentStore  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser(description="Delete the memory store and reopen it empty")
    ap.add_argument("--db", default=None, help="SQLite database path (overrides HAL_MEMORY_DB)")
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--yes", action="store_true", help="Confirm the destructive reset")
    args = ap.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    cfg = resolve_memory_config(path=args.db)
    client = SQLiteMemoryClient(cfg)
    existing = [p for p in client.artifact_paths() if p.exists()]

    if args.dry_run or not args.yes:
        print(f"[plan] database={cfg.path}")
        for path in existing:
            print(f"[plan] delete {path}")
        if not existing:
            print("[plan] no files present")
        if not args.yes:
            print("[plan] no-op (pass --yes to delete). Nothing changed.")
        return 0

    store = SQLiteContentStore(client=client)
    try:
        report = store.reset()
    finally:
        store.close()
    for path in report.deleted:
        print(f"[drop] {path}")
    for path, error in report.failures.items():
        print(f"[error] {path}: {error}")
    print(f"[reset] success={report.success} healthy={report.healthy}")
    return 0 if report.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
