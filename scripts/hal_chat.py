#!/usr/bin/env python3
"""
Module: scripts/hal_chat.py
Summary: Interactive chat with persistent memory, relevant-context recall and auto-summaries.
Inputs: HAL_* env (database path, memory depth, embedding model), HAL_MODEL_* env; CLI flags
Outputs: Conversation turns persisted to the SQLite memory store
Related: halcore/runtime/memory/*

Usage:
  python scripts/hal_chat.py --conversation demo --dry-run
  python scripts/hal_chat.py --conversation demo --depth 4
  python scripts/hal_chat.py --no-model        # store-only session, replies are errors

Commands inside the chat:
  /exit, :q       quit
  /preview        show the next prompt with per-message token counts
  /status         store statistics and embedding tier
  /summary        current injected summary and watermark
  /clear          forget this session's messages and summary (rows stay until reset)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from halcore.runtime.memory import (  # noqa: E402
    ConsoleTelemetryClient,
    MemoryConfig,
    MemoryOrchestrator,
    TransformersModelConfig,
    TransformersModelEngine,
)


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run an interactive chat session with persistent memory")
    p.add_argument("--conversation", default="", help="Conversation ID (random UUID if omitted)")
    p.add_argument("--db", default=None, help="SQLite database path (overrides HAL_MEMORY_DB)")
    p.add_argument("--depth", type=int, default=None, help="Memory depth in turns (overrides HAL_MEMORY_DEPTH)")
    p.add_argument("--system-prompt-file", default=None, help="File whose text replaces the system prompt")
    p.add_argument("--dry-run", action="store_true", help="Print plan and exit without loading the model")
    p.add_argument("--no-model", action="store_true", help="Do not load a language model")
    p.add_argument("--telemetry", action="store_true", help="Log telemetry spans")
    p.add_argument("--max-new-tokens", type=int, default=None)
    p.add_argument("--device", default=None, help="Model device string (e.g., cuda:0)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args()


def build_model(args: argparse.Namespace) -> TransformersModelEngine | None:
    if args.no_model:
        return None
    config = TransformersModelConfig.from_env()
    if args.device:
        config.device = args.device
    if args.max_new_tokens:
        config.max_new_tokens = args.max_new_tokens
    return TransformersModelEngine(config)


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = MemoryConfig.from_env()
    if args.db:
        config.db_path = Path(args.db).expanduser()
    if args.depth is not None:
        config.memory_depth = args.depth

    engine = build_model(args)
    if args.dry_run:
        print("[plan] Ready to chat with:")
        print(f"  conversation={args.conversation or '<new>'}")
        print(f"  db={config.db_path or '<default>'} depth={config.memory_depth}")
        print(f"  embedding_model={config.embedding.model_name or 'hash'} device={config.embedding.device}")
        if engine is not None:
            print(f"  model_id={engine.config.model_id} device={engine.config.device}")
        print("[plan] No model load due to --dry-run")
        return 0

    if engine is not None:
        try:
            engine.load()
        except Exception as exc:
            print(f"[warn] Failed to load model ({exc}); replies will report the model as unavailable")

    telemetry = ConsoleTelemetryClient() if args.telemetry else None
    system_prompt = None
    if args.system_prompt_file:
        system_prompt = Path(args.system_prompt_file).read_text(encoding="utf-8").strip()

    with MemoryOrchestrator(config, model=engine, telemetry=telemetry) as memory:
        session = memory.open_session(args.conversation or None, system_prompt=system_prompt)
        state = session.state
        print(
            f"[chat] conversation={session.conversation_id} messages={len(session.messages)} "
            f"turns={state.completed_turns} watermark={state.watermark}"
        )
        print("Type your message. Ctrl-D or /exit to quit.")

        while True:
            try:
                user = input("you> ").strip()
            except EOFError:
                print()
                break
            if not user:
                continue
            if user in {"/exit", ":q"}:
                break
            if user == "/preview":
                print(session.preview_prompt(show_token_counts=True))
                tokens, level = session.memory_meter()
                print(f"[memory] ~{tokens} tokens ({level})")
                continue
            if user == "/status":
                print(json.dumps(memory.status(), indent=2))
                continue
            if user == "/summary":
                state = session.state
                print(f"[summary] watermark={state.watermark} pending={state.pending_auto_inject}")
                print(state.injected_summary or "(none)")
                continue
            if user == "/clear":
                session.clear()
                print("[chat] session cleared")
                continue

            result = session.send_user_message(user)
            if result.context.has_context:
                print(
                    f"[recall] {len(result.context.conversation_hits)} conversation, "
                    f"{len(result.context.document_hits)} document snippet(s)"
                )
            if result.error:
                print(f"[error] {result.error}")
            else:
                print(f"hal> {result.reply.content}\n")
            if session.last_summary_error:
                print(f"[warn] auto-summary failed: {session.last_summary_error}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
