"""Entry point: python -m marginalia [serve|notes URL|migrate]

- "serve":     Daemon mode (bridge + live sync)
- "notes URL": Print the notes attached to a URL, most specific scope first
- "migrate":   Run the one-time legacy cache migration now
"""

from __future__ import annotations

import asyncio
import logging
import sys

from marginalia.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve() -> None:
    """Daemon mode."""
    config = load_config()
    _setup_logging(config.log_level)

    from marginalia.daemon import MarginaliaDaemon

    daemon = MarginaliaDaemon(config)
    asyncio.run(daemon.run())


async def _show_notes(url: str) -> int:
    from marginalia.daemon import build_orchestrator, build_store
    from marginalia.notes.context import parse_url_context
    from marginalia.notes.types import visible_scopes

    context = parse_url_context(url)
    if context is None:
        print(f"Not an absolute URL: {url}", file=sys.stderr)
        return 1

    config = load_config()
    store = build_store(config)
    orchestrator = build_orchestrator(config, store)
    try:
        for scope in visible_scopes(context):
            notes = await orchestrator.load_notes(scope, context)
            print(f"[{scope.value}] {len(notes)} note(s)")
            for note in notes:
                print(f"  - {note.text}")
    finally:
        orchestrator.close()
        if store is not None:
            await store.close()
    return 0


async def _migrate() -> int:
    from marginalia.daemon import build_orchestrator, build_store
    from marginalia.sync.migration import LegacyMigrator

    config = load_config()
    store = build_store(config)
    orchestrator = build_orchestrator(config, store)
    try:
        # initialize_sync runs the migration when it is still pending
        client = await orchestrator.initialize_sync()
        if client is None:
            print("Migration needs a remote store and a user id.", file=sys.stderr)
            return 1
        done = await LegacyMigrator(orchestrator.cache, client).is_done()
        print("Migration complete." if done else "Migration did not finish; see log.")
        return 0 if done else 1
    finally:
        orchestrator.close()
        if store is not None:
            await store.close()


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""

    if cmd == "serve":
        _run_serve()
    elif cmd == "notes" and len(sys.argv) > 2:
        _setup_logging(load_config().log_level)
        sys.exit(asyncio.run(_show_notes(sys.argv[2])))
    elif cmd == "migrate":
        _setup_logging(load_config().log_level)
        sys.exit(asyncio.run(_migrate()))
    else:
        print("Usage: python -m marginalia [serve|notes URL|migrate]")
        print("  serve      — Daemon mode: extension bridge + live sync")
        print("  notes URL  — Show the notes attached to URL")
        print("  migrate    — Run the one-time legacy cache migration")
        sys.exit(1)


if __name__ == "__main__":
    main()
