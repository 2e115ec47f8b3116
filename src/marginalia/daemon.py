"""Daemon process — always-on sync engine for the browser extension.

Usage: python -m marginalia serve

Manages:
- Component wiring (cache, remote store, orchestrator, notifier, bridge)
- Scope rebinding on every context change
- Periodic push of collections still pending sync
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from marginalia.config import MarginaliaConfig, load_config
from marginalia.connectors.bridge import NotesBridge
from marginalia.connectors.tabs import TabTracker
from marginalia.identity import StaticIdentity
from marginalia.notes.types import UrlContext
from marginalia.notifier import ContextNotifier
from marginalia.storage.cache import LocalCache
from marginalia.storage.http import HttpDocumentStore
from marginalia.sync.binder import ScopeBinder
from marginalia.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def build_store(config: MarginaliaConfig) -> HttpDocumentStore | None:
    if not config.remote.url:
        return None
    return HttpDocumentStore(
        config.remote.url,
        config.remote.api_key,
        timeout=config.remote.timeout,
        retry_delay=config.remote.retry_delay,
    )


def build_orchestrator(config: MarginaliaConfig, store: HttpDocumentStore | None) -> SyncOrchestrator:
    return SyncOrchestrator(
        LocalCache(config.data_dir),
        StaticIdentity(config.user_id),
        store,
        sync_config=config.sync,
    )


async def retry_pending_loop(
    orchestrator: SyncOrchestrator, interval: float, shutdown_event: asyncio.Event
) -> None:
    """Push collections that missed the remote store every *interval* seconds."""
    while True:
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass
        if not orchestrator.pending_keys:
            continue
        try:
            await orchestrator.retry_pending()
        except Exception as e:
            logger.error("Pending sync retry failed: %s", e)


class MarginaliaDaemon:
    """Always-on daemon process."""

    def __init__(self, config: MarginaliaConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        self.config.pid_file.unlink(missing_ok=True)

    def _read_pid(self) -> int | None:
        try:
            return int(self.config.pid_file.read_text().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("Ignoring unreadable PID file %s", self.config.pid_file)
            self._remove_pid()
            return None

    def _check_existing(self) -> None:
        pid = self._read_pid()
        if pid is None:
            return
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            logger.info("Removing stale PID file %s (pid=%d)", self.config.pid_file, pid)
            self._remove_pid()
            return
        except PermissionError:
            pass  # alive, owned by another user
        print(f"Marginalia daemon already running (pid={pid}). Exiting.", file=sys.stderr)
        sys.exit(1)

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        store = build_store(self.config)
        orchestrator = build_orchestrator(self.config, store)
        tabs = TabTracker()
        notifier = ContextNotifier(tabs, debounce=self.config.sync.debounce_ms / 1000)
        bridge = NotesBridge(self.config.bridge, orchestrator, notifier, tabs)
        binder = ScopeBinder(orchestrator, bridge.record)

        async def on_context(context: UrlContext | None) -> None:
            bridge.clear_snapshot()
            await binder.bind(context)

        notifier.listen(on_context)

        logger.info(
            "Marginalia daemon starting (remote=%s, user=%s)",
            self.config.remote.url or "none",
            self.config.user_id or "anonymous",
        )

        retry_task = asyncio.create_task(
            retry_pending_loop(orchestrator, self.config.sync.retry_interval, self._shutdown_event)
        )
        try:
            await orchestrator.initialize_sync()
            await bridge.start()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            retry_task.cancel()
            await asyncio.gather(retry_task, return_exceptions=True)
            await notifier.close()
            binder.unbind()
            await bridge.stop()
            orchestrator.close()
            if store is not None:
                await store.close()
            self._remove_pid()
            logger.info("Marginalia daemon stopped.")
