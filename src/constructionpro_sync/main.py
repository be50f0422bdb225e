"""ConstructionPro Sync - Main entry point."""

import argparse
import getpass
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .auth import KeychainManager, StoredCredentials
from .config import Config, setup_logging
from .sync import (
    ConflictResolver,
    ConstructionProClient,
    LocalCache,
    OfflineRepository,
    PendingActionStore,
    PhotoUploader,
    Prefetcher,
    SyncManager,
    default_registry,
)
from .sync.http_client import ApiAuthError

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Owns the scheduler that drains the outbox and refreshes the cache."""

    def __init__(
        self,
        config: Config,
        manager: SyncManager,
        prefetcher: Optional[Prefetcher] = None,
    ) -> None:
        self.config = config
        self.manager = manager
        self.prefetcher = prefetcher
        self.scheduler = BackgroundScheduler()

    def start(self) -> None:
        """Recover interrupted work, run an initial sync and start the scheduler."""
        self.manager.recover_interrupted()
        self._do_sync()

        self.scheduler.add_job(
            self._do_sync,
            trigger=IntervalTrigger(seconds=self.config.sync.interval_seconds),
            id="sync_job",
            replace_existing=True,
        )
        if self.prefetcher:
            self.scheduler.add_job(
                self._do_prefetch,
                trigger=IntervalTrigger(seconds=self.config.sync.prefetch_interval_seconds),
                id="prefetch_job",
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info(
            f"Sync loop started (interval: {self.config.sync.interval_seconds}s)"
        )

    def stop(self) -> None:
        """Shut down the scheduler if running."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def reschedule(self, interval_seconds: int) -> None:
        """Change the sync interval on the fly."""
        self.config.sync.interval_seconds = interval_seconds
        if self.scheduler.running:
            self.scheduler.reschedule_job(
                "sync_job",
                trigger=IntervalTrigger(seconds=interval_seconds),
            )

    def trigger_sync(self, job_id: str = "immediate_sync") -> None:
        """Schedule a one-off sync (e.g. after the network comes back)."""
        if self.scheduler.running:
            self.scheduler.add_job(self._do_sync, id=job_id, replace_existing=True)

    def _do_sync(self) -> None:
        """Perform a sync pass."""
        try:
            if self.manager.sync_all():
                logger.debug("Sync pass complete, outbox drained")
            else:
                state = self.manager.state
                logger.info(
                    f"Sync pass incomplete: {state.pending_count} pending, "
                    f"{state.failed_count} failed, {state.conflict_count} in conflict"
                )
        except Exception as e:
            logger.exception(f"Sync error: {e}")

    def _do_prefetch(self) -> None:
        try:
            self.prefetcher.run()
        except ApiAuthError as e:
            logger.warning(f"Auth error during prefetch: {e}")
        except Exception as e:
            logger.exception(f"Prefetch error: {e}")


@dataclass
class SyncApp:
    """The wired-up services of one sync process."""

    config: Config
    store: PendingActionStore
    cache: LocalCache
    client: ConstructionProClient
    manager: SyncManager
    repository: OfflineRepository
    prefetcher: Prefetcher
    coordinator: SyncCoordinator

    def close(self) -> None:
        """Stop the scheduler and release resources. Safe to call multiple times."""
        self.coordinator.stop()
        self.client.close()
        self.store.close()
        self.cache.close()


def build_app(
    config: Config,
    data_dir: Optional[Path] = None,
    keychain: Optional[KeychainManager] = None,
) -> SyncApp:
    """Wire the store, cache, API client and sync services together.

    Args:
        config: Loaded configuration
        data_dir: Directory for the SQLite files (defaults to the user data dir)
        keychain: Credential source for the API token
    """
    data_dir = data_dir or Config.get_data_dir()
    keychain = keychain or KeychainManager(config.api_url)

    store = PendingActionStore(data_dir / "pending_actions.db")
    cache = LocalCache(data_dir / "local_cache.db")
    token = keychain.get_token(config.user_email)
    if not token:
        logger.warning("No API token in keychain; requests will be unauthenticated")
    client = ConstructionProClient(
        api_url=config.api_url,
        token=token,
        timeout=config.sync.request_timeout,
    )

    registry = default_registry(client, cache, store)
    resolver = ConflictResolver(store, cache)
    photos = PhotoUploader(client, store, max_retry_count=config.sync.max_retry_count)
    manager = SyncManager(
        store, registry, cache, settings=config.sync, resolver=resolver, photos=photos
    )
    repository = OfflineRepository(client, store, cache, registry)
    prefetcher = Prefetcher(client, cache, page_size=config.sync.prefetch_page_size)
    coordinator = SyncCoordinator(config, manager, prefetcher)

    return SyncApp(
        config=config,
        store=store,
        cache=cache,
        client=client,
        manager=manager,
        repository=repository,
        prefetcher=prefetcher,
        coordinator=coordinator,
    )


class SingleInstanceLock:
    """File-based lock so only one process drains a given outbox."""

    def __init__(self, path: Optional[Path] = None):
        self._file = None
        self._path = str(path or Config.get_data_dir() / ".constructionpro-sync.lock")

    def acquire(self) -> bool:
        """Try to acquire the lock. Returns True on success."""
        os.makedirs(os.path.dirname(self._path), exist_ok=True)
        self._file = open(self._path, "a+")  # noqa: SIM115
        try:
            if sys.platform == "win32":
                import msvcrt
                msvcrt.locking(self._file.fileno(), msvcrt.LK_NBLCK, 1)
            else:
                import fcntl
                fcntl.flock(self._file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            self._file.seek(0)
            self._file.truncate(0)
            self._file.write(str(os.getpid()))
            self._file.flush()
            return True
        except OSError:
            self._file.close()
            self._file = None
            return False

    def release(self) -> None:
        """Release the lock and remove the lock file."""
        if self._file is None:
            return
        try:
            if sys.platform == "win32":
                import msvcrt
                msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
            else:
                import fcntl
                fcntl.flock(self._file, fcntl.LOCK_UN)
            self._file.close()
            os.unlink(self._path)
        except OSError as e:
            logger.debug(f"Lock release: {e}")
        self._file = None

    def __enter__(self) -> "SingleInstanceLock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


def _parse_args(argv: Optional[list[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="constructionpro-sync",
        description="Drain the ConstructionPro offline outbox to the server.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="Run a single sync pass and exit")
    group.add_argument(
        "--retry-failed", action="store_true", help="Move failed actions back to pending"
    )
    group.add_argument("--clear-failed", action="store_true", help="Delete failed actions")
    group.add_argument("--status", action="store_true", help="Print sync status as JSON")
    group.add_argument(
        "--set-token",
        metavar="EMAIL",
        help="Prompt for an API token and save it in the keyring for EMAIL",
    )
    return parser.parse_args(argv)


def _save_token(config: Config, email: str) -> int:
    token = getpass.getpass(f"API token for {email}: ").strip()
    if not token:
        print("No token entered")
        return 1

    keychain = KeychainManager(config.api_url)
    if not keychain.save(StoredCredentials(api_token=token, user_email=email)):
        print("Could not write to the system keyring")
        return 1

    config.user_email = email
    config.save()
    print(f"Token saved for {email} on {config.api_url}")
    return 0


def _run_forever(app: SyncApp) -> None:
    stop_event = threading.Event()

    def handle_signal(signum, frame) -> None:
        logger.info(f"Received signal {signum}")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    app.coordinator.start()
    logger.info("ConstructionPro Sync running")
    stop_event.wait()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Returns:
        Process exit status
    """
    args = _parse_args(argv)
    config = Config.load()
    setup_logging(args.debug or config.debug_mode)
    logger.info(f"Using API URL: {config.api_url}")

    if args.set_token:
        return _save_token(config, args.set_token)

    lock = SingleInstanceLock()
    if not lock.acquire():
        print("ConstructionPro Sync is already running.")
        return 0

    app = None
    try:
        app = build_app(config)
        manager = app.manager

        if args.status:
            print(json.dumps(manager.get_status(), indent=2))
            return 0
        if args.retry_failed:
            print(f"Reset {manager.retry_failed()} failed actions")
            return 0
        if args.clear_failed:
            print(f"Cleared {manager.clear_failed()} failed actions")
            return 0
        if args.once:
            manager.recover_interrupted()
            ok = manager.sync_all()
            print(json.dumps(manager.state.to_dict(), indent=2))
            return 0 if ok else 1

        _run_forever(app)
        return 0
    finally:
        if app is not None:
            logger.info("Shutting down...")
            app.close()
        lock.release()


if __name__ == "__main__":
    sys.exit(main())
