#!/usr/bin/env python3
"""
Module: scripts/import_documents.py
Summary: Chunk, embed and store plain-text documents in the memory store.
Inputs: HAL_MEMORY_DB, HAL_EMBED_*, HAL_CHUNK_* env; file or directory paths
Outputs: Document sources and chunks in the SQLite memory store
Related: halcore/runtime/memory/importer.py

Usage:
  python scripts/import_documents.py notes.md docs/ --dry-run
  python scripts/import_documents.py docs/ --recursive --kind document
  python scripts/import_documents.py --reembed      # bring old vectors into the active space
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from halcore.runtime.memory import MemoryConfig, MemoryOrchestrator  # noqa: E402
from halcore.runtime.memory.importer import PLAIN_TEXT_FORMATS  # noqa: E402

logger = logging.getLogger("import_documents")


def collect_paths(inputs: Iterable[str], recursive: bool) -> List[Path]:
    paths: List[Path] = []
    for raw in inputs:
        path = Path(raw).expanduser()
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            paths.extend(
                p for p in sorted(path.glob(pattern))
                if p.is_file() and p.suffix.lower().lstrip(".") in PLAIN_TEXT_FORMATS
            )
        elif path.is_file():
            paths.append(path)
        else:
            logger.warning(f"Skipping missing path {path}")
    return paths


def main() -> int:
    ap = argparse.ArgumentParser(description="Import documents into the memory store")
    ap.add_argument("paths", nargs="*", help="Files or directories to import")
    ap.add_argument("--db", default=None, help="SQLite database path (overrides HAL_MEMORY_DB)")
    ap.add_argument("--recursive", action="store_true", help="Descend into subdirectories")
    ap.add_argument("--kind", default="document", choices=["document", "webpage", "email"])
    ap.add_argument("--dry-run", action="store_true", help="List what would be imported")
    ap.add_argument("--reembed", action="store_true", help="Re-embed units stored in another embedding space")
    args = ap.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    paths = collect_paths(args.paths, args.recursive)
    if not paths and not args.reembed:
        print("[plan] nothing to import")
        return 0
    if args.dry_run:
        for path in paths:
            print(f"[plan] import {path} as {args.kind}")
        if args.reembed:
            print("[plan] re-embed incomparable units")
        return 0

    config = MemoryConfig.from_env()
    if args.db:
        config.db_path = Path(args.db).expanduser()
    config.background_workers = 0

    failures = 0
    with MemoryOrchestrator(config) as memory:
        for path in paths:
            try:
                text = memory.importer.read_text(path)
                result = memory.store_content(path.name, text, str(path.resolve()), args.kind)
            except Exception as exc:
                failures += 1
                print(f"[error] {path}: {exc}")
                continue
            state = "unchanged" if result.unchanged else f"{result.stored}/{result.chunks} chunks"
            print(f"[import] {path.name}: {state} (source={result.source.id})")
        if args.reembed:
            print(f"[reembed] {memory.reembed_incomparable()} unit(s) updated")
        stats = memory.store.aggregate_stats()
        print(f"[stats] documents={stats.documents} chunks={stats.document_chunks}")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
