from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional

from config import get_settings
from context_cache.storage import JsonFilePersistence
from context_cache.store import ChatHistoryStore
from monitoring.telemetry import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="context-cache",
        description="Inspect and maintain a chat history cache directory.",
    )
    parser.add_argument("--path", help="Storage directory (default from settings)")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("stats", help="Show usage and tracked key count")
    show = sub.add_parser("show", help="Print the stored conversation for a key")
    show.add_argument("key")
    clear = sub.add_parser("clear", help="Remove the history for a key")
    clear.add_argument("key")
    sub.add_parser("clear-all", help="Remove every stored history")
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Run one maintenance command and return the exit code.

    Commands:
        stats        Show usage and tracked key count.
        show KEY     Print the stored conversation for KEY.
        clear KEY    Remove the history for KEY.
        clear-all    Remove every stored history.
    """
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    port = JsonFilePersistence(
        args.path or settings.disk_path,
        capacity_bytes=settings.default_capacity_bytes,
    )
    store = ChatHistoryStore(port, settings=settings)

    if args.command == "stats":
        stats = await store.stats()
        print(f"Usage: {stats.usage:.1%} ({stats.bytes_used} / {stats.max_bytes} bytes)")
        print(f"Tracked keys: {stats.key_count}")
        return 0

    if args.command == "show":
        messages = await store.load(args.key)
        if not messages:
            print("No history available.")
            return 1
        for msg in messages:
            speaker = "User" if msg.sender.value == "user" else "AI"
            print(f"[{msg.timestamp.isoformat()}] {speaker}: {msg.content}")
        return 0

    if args.command == "clear":
        ok = await store.clear(args.key)
        print("Cleared." if ok else "Nothing to clear.")
        return 0 if ok else 1

    ok = await store.clear_all()
    print("All histories cleared." if ok else "Failed to clear all histories.")
    return 0 if ok else 1


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
