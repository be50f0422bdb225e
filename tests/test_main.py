"""Tests for the coordinator, app wiring and command line."""

import json
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

from constructionpro_sync import main as main_module
from constructionpro_sync.config import Config
from constructionpro_sync.main import SingleInstanceLock, SyncCoordinator, build_app
from constructionpro_sync.sync.http_client import ApiAuthError
from constructionpro_sync.sync.models import PendingAction, SyncState, SyncStatus


class TestSyncCoordinator:
    def setup_method(self):
        self.config = Config()
        self.manager = Mock()
        self.manager.state = SyncState()
        self.prefetcher = Mock()
        self.coordinator = SyncCoordinator(self.config, self.manager, self.prefetcher)
        self.coordinator.scheduler = Mock()
        self.coordinator.scheduler.running = True

    def test_start_recovers_then_syncs_and_schedules(self):
        """Test start recovers interrupted actions, syncs, then schedules jobs."""
        self.coordinator.start()

        self.manager.recover_interrupted.assert_called_once()
        self.manager.sync_all.assert_called_once()
        job_ids = [c.kwargs["id"] for c in self.coordinator.scheduler.add_job.call_args_list]
        assert job_ids == ["sync_job", "prefetch_job"]
        self.coordinator.scheduler.start.assert_called_once()

    def test_sync_errors_are_logged_not_raised(self):
        """Test sync job errors do not escape the scheduler."""
        self.manager.sync_all.side_effect = RuntimeError("boom")

        self.coordinator._do_sync()

    def test_prefetch_errors_are_logged_not_raised(self):
        """Test prefetch job errors do not escape the scheduler."""
        self.prefetcher.run.side_effect = ApiAuthError(401, "expired")
        self.coordinator._do_prefetch()

        self.prefetcher.run.side_effect = RuntimeError("boom")
        self.coordinator._do_prefetch()

    def test_trigger_sync(self):
        """Test an immediate sync is scheduled."""
        self.coordinator.trigger_sync()

        self.coordinator.scheduler.add_job.assert_called_once_with(
            self.coordinator._do_sync, id="immediate_sync", replace_existing=True
        )

    def test_reschedule(self):
        """Test changing the sync interval."""
        self.coordinator.reschedule(300)

        assert self.config.sync.interval_seconds == 300
        self.coordinator.scheduler.reschedule_job.assert_called_once()

    def test_stop(self):
        """Test stopping the scheduler."""
        self.coordinator.stop()

        self.coordinator.scheduler.shutdown.assert_called_once_with(wait=False)


class TestBuildApp:
    def test_wires_services_with_keychain_token(self):
        """Test the app is wired with the keychain token."""
        temp_dir = Path(tempfile.mkdtemp())
        keychain = Mock()
        keychain.get_token.return_value = "tok-123"

        app = build_app(Config(), data_dir=temp_dir, keychain=keychain)
        try:
            assert app.client.token == "tok-123"
            keychain.get_token.assert_called_once_with(None)
            assert app.manager.store is app.store
            assert "DAILY_LOG_CREATE" in app.manager.registry
            assert (temp_dir / "pending_actions.db").exists()
            assert (temp_dir / "local_cache.db").exists()
        finally:
            app.close()


class TestSingleInstanceLock:
    def test_second_lock_fails(self):
        """Test a second instance cannot take the lock."""
        path = Path(tempfile.mkdtemp()) / "sync.lock"
        first = SingleInstanceLock(path)
        second = SingleInstanceLock(path)

        assert first.acquire()
        try:
            assert not second.acquire()
        finally:
            first.release()

        assert second.acquire()
        second.release()


class TestMain:
    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        keychain = Mock()
        keychain.get_token.return_value = None
        self.app = build_app(Config(), data_dir=self.temp_dir, keychain=keychain)

        self.patches = [
            patch.object(main_module, "build_app", return_value=self.app),
            patch.object(main_module, "setup_logging"),
            patch.object(main_module.Config, "load", return_value=Config()),
            patch.object(
                main_module,
                "SingleInstanceLock",
                return_value=SingleInstanceLock(self.temp_dir / "test.lock"),
            ),
        ]
        for p in self.patches:
            p.start()

    def teardown_method(self):
        for p in self.patches:
            p.stop()
        self.app.close()

    def test_status(self, capsys):
        """Test printing the outbox status."""
        self.app.store.upsert(PendingAction(type="DAILY_LOG_UPDATE", payload={}))

        assert main_module.main(["--status"]) == 0

        status = json.loads(capsys.readouterr().out)
        assert status["pending_count"] == 1

    def test_once_with_empty_outbox(self, capsys):
        """Test a single pass over an empty outbox."""
        assert main_module.main(["--once"]) == 0

    def test_once_with_failure_exits_nonzero(self):
        """Test a single pass with a failure exits non-zero."""
        self.app.store.upsert(PendingAction(type="UNREGISTERED", payload={}))

        assert main_module.main(["--once"]) == 1

    def test_retry_and_clear_failed(self):
        """Test retrying and clearing failed actions from the command line."""
        for _ in range(2):
            self.app.store.upsert(
                PendingAction(type="DAILY_LOG_UPDATE", payload={}, status=SyncStatus.FAILED)
            )

        assert main_module.main(["--retry-failed"]) == 0
        assert self.app.store.count_by_status(SyncStatus.PENDING) == 2

        self.app.store.update_status(
            self.app.store.get_by_status(SyncStatus.PENDING)[0].id,
            SyncStatus.FAILED,
            1,
            None,
            "x",
        )
        assert main_module.main(["--clear-failed"]) == 0
        assert self.app.store.count_by_status(SyncStatus.FAILED) == 0

    def test_set_token_saves_to_keyring(self):
        """Test saving a token from the command line."""
        keychain = Mock()
        keychain.save.return_value = True
        with patch.object(main_module, "KeychainManager", return_value=keychain), patch.object(
            main_module.getpass, "getpass", return_value=" tok-9 \n"
        ), patch.object(main_module.Config, "save") as save:
            assert main_module.main(["--set-token", "site@example.com"]) == 0

        credentials = keychain.save.call_args[0][0]
        assert credentials.api_token == "tok-9"
        assert credentials.user_email == "site@example.com"
        save.assert_called_once()

    def test_set_token_rejects_empty_input(self):
        """Test an empty token is not saved."""
        keychain = Mock()
        with patch.object(main_module, "KeychainManager", return_value=keychain), patch.object(
            main_module.getpass, "getpass", return_value=""
        ):
            assert main_module.main(["--set-token", "site@example.com"]) == 1

        keychain.save.assert_not_called()
