#!/usr/bin/env python3
"""
Tests for Migration Target.

This module contains unit tests for the receiving side: per-round page
servers, the lazy-pages listener, and restore from the merged chain.
"""

import os
import shutil
import signal
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from live_migration.config.settings import MigrationConfig
from live_migration.engine.protocol import OperationResponse, PageServerInfo, RequestKind
from live_migration.errors import AuxiliaryProcessError, InvalidTransition, IterationFailed, OperationFailed
from live_migration.migration.state import MigrationState
from live_migration.migration.target import MigrationTarget


def engine_reply(request, callbacks=None):
    """Answer engine calls the way a healthy engine would."""
    if request.kind in (RequestKind.PAGE_SERVER_CHILD, RequestKind.LAZY_PAGES):
        return OperationResponse(
            kind=request.kind,
            success=True,
            page_server=PageServerInfo(pid=500, port=0)
        )
    if request.kind is RequestKind.RESTORE:
        return OperationResponse(kind=request.kind, success=True, restored_pid=4321)
    return OperationResponse(kind=request.kind, success=True)


class TestMigrationTarget(unittest.TestCase):
    """Test cases for MigrationTarget class."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.work_dir = os.path.join(self.temp_dir, "target")
        self.config = MigrationConfig(pid=1234, memory_fd=9, work_dir=self.work_dir)
        self.target = MigrationTarget(self.config)
        self.requests = []
        self.lent = []

        def record(request, callbacks=None):
            self.requests.append(request)
            if request.options.images_dir_fd is not None:
                self.lent.append(os.fstat(request.options.images_dir_fd))
            return engine_reply(request, callbacks)

        call_patcher = patch.object(self.target.transport, 'call', side_effect=record)
        self.mock_call = call_patcher.start()
        self.addCleanup(call_patcher.stop)

        wait_patcher = patch('live_migration.migration.auxiliary.os.waitpid', return_value=(500, 0))
        self.mock_waitpid = wait_patcher.start()
        self.addCleanup(wait_patcher.stop)

    def tearDown(self):
        """Clean up test fixtures."""
        self.target.close()
        shutil.rmtree(self.temp_dir)

    def run_rounds(self, count):
        for _ in range(count):
            self.target.start_iteration()
            self.target.stop_iteration()

    def test_start_iteration_starts_page_server(self):
        """Test that each round gets its own page server."""
        self.run_rounds(1)
        page_server = self.target.start_iteration()

        first, second = self.requests
        self.assertEqual(first.kind, RequestKind.PAGE_SERVER_CHILD)
        self.assertIsNone(first.options.parent_img)
        self.assertEqual(second.options.parent_img, os.path.join("..", "0"))
        self.assertEqual(second.options.page_server.fd, 9)
        self.assertEqual(second.options.log_file, "ps.log")
        self.assertTrue(os.path.samestat(self.lent[1], os.stat(os.path.join(self.work_dir, "1"))))
        self.assertEqual(page_server.pid, 500)
        self.assertEqual(self.target.state.state, MigrationState.ITERATING)

    def test_stop_iteration_waits_for_page_server(self):
        """Test that stopping a round reaps the page server."""
        self.target.start_iteration()

        self.target.stop_iteration()

        self.mock_waitpid.assert_called_once_with(500, 0)
        self.assertTrue(self.target.page_server.waited)
        self.assertEqual(self.target.state.state, MigrationState.STOPPING)

    def test_stop_before_start(self):
        """Test stopping a round that was never started."""
        with self.assertRaises(AuxiliaryProcessError):
            self.target.stop_iteration()

    def test_page_server_failure(self):
        """Test that an abnormal page server exit fails the migration."""
        self.mock_waitpid.return_value = (500, 256)
        self.target.start_iteration()

        with self.assertRaises(IterationFailed):
            self.target.stop_iteration()

        self.assertEqual(self.target.state.state, MigrationState.FAILED)

    def test_page_server_refused(self):
        """Test that an engine refusal fails the migration."""
        self.mock_call.side_effect = OperationFailed(1, "cannot bind", "page-server-child")

        with self.assertRaises(OperationFailed):
            self.target.start_iteration()

        self.assertEqual(self.target.state.state, MigrationState.FAILED)
        self.assertIsNone(self.target.page_server)

    def test_eager_restore_merges_into_last_round(self):
        """Test that eager restore folds the hand-off directory into the last round."""
        self.run_rounds(3)
        hand_off = os.path.join(self.temp_dir, "final")
        os.mkdir(hand_off)
        Path(hand_off, "core-1234.img").write_bytes(b"core")

        restored_pid = self.target.restore(hand_off)

        last_round = os.path.join(self.work_dir, "2")
        self.assertEqual(restored_pid, 4321)
        self.assertTrue(os.path.exists(os.path.join(last_round, "core-1234.img")))
        self.assertEqual(sorted(os.listdir(self.work_dir)), ["0", "1", "2"])

        restore = self.requests[-1]
        self.assertEqual(restore.kind, RequestKind.RESTORE)
        self.assertFalse(restore.options.lazy_pages)
        self.assertTrue(os.path.samestat(self.lent[-1], os.stat(last_round)))
        self.assertEqual(self.target.state.state, MigrationState.DONE)

    def test_eager_restore_needs_hand_off_directory(self):
        """Test that eager restore without a hand-off directory fails."""
        self.run_rounds(1)

        with self.assertRaises(ValueError):
            self.target.restore()

        self.assertEqual(self.target.state.state, MigrationState.FAILED)

    def test_restore_is_issued_with_callbacks(self):
        """Test that restore passes the target as callback sink."""
        def restore_with_notification(request, callbacks=None):
            self.assertIs(callbacks, self.target)
            callbacks.after_restore(777)
            return OperationResponse(kind=request.kind, success=True)

        self.run_rounds(1)
        hand_off = os.path.join(self.temp_dir, "final")
        os.mkdir(hand_off)
        self.mock_call.side_effect = restore_with_notification

        self.assertEqual(self.target.restore(hand_off), 777)

    def test_lazy_restore(self):
        """Test lazy mode: listener over the image root, restore without waiting on it."""
        self.config.lazy = True
        self.run_rounds(1)

        lazy_pages = self.target.start_lazy_pages()
        self.target.restore()

        lazy_request, restore = self.requests[-2:]
        self.assertEqual(lazy_request.kind, RequestKind.LAZY_PAGES)
        self.assertTrue(lazy_request.options.lazy_pages)
        self.assertTrue(restore.options.lazy_pages)
        self.assertTrue(os.path.samestat(self.lent[-2], os.stat(self.work_dir)))
        self.assertTrue(os.path.samestat(self.lent[-1], os.stat(self.work_dir)))

        self.assertIs(self.target.lazy_pages, lazy_pages)
        self.assertFalse(lazy_pages.waited)
        self.mock_waitpid.assert_called_once_with(500, 0)
        self.assertEqual(self.target.state.state, MigrationState.DONE)

    def test_restore_twice(self):
        """Test that a finished target cannot restore again."""
        self.config.lazy = True
        self.run_rounds(1)
        self.target.restore()

        with self.assertRaises(InvalidTransition):
            self.target.restore()

        self.assertEqual(self.target.state.state, MigrationState.DONE)

    def test_eager_restore_uses_configured_image_suffix(self):
        """Test that the merge picks up images by the configured suffix."""
        self.target.settings.set("image_suffix", ".pb")
        self.run_rounds(1)
        hand_off = os.path.join(self.temp_dir, "final")
        os.mkdir(hand_off)
        Path(hand_off, "core-1234.pb").write_bytes(b"core")
        Path(hand_off, "core-1234.img").write_bytes(b"stale")

        self.target.restore(hand_off)

        self.assertEqual(os.listdir(os.path.join(self.work_dir, "0")), ["core-1234.pb"])

    @patch('live_migration.migration.auxiliary.os.kill')
    def test_abort_kills_running_page_server(self, mock_kill):
        """Test that aborting mid-round fails the target and kills its page server."""
        self.target.start_iteration()

        self.target.abort()

        mock_kill.assert_called_once_with(500, signal.SIGKILL)
        self.mock_waitpid.assert_not_called()
        self.assertEqual(self.target.state.state, MigrationState.FAILED)

    @patch('live_migration.migration.auxiliary.os.kill')
    def test_abort_after_finished_round(self, mock_kill):
        """Test that aborting leaves reaped page servers alone."""
        self.run_rounds(1)

        self.target.abort()

        mock_kill.assert_not_called()
        self.assertEqual(self.target.state.state, MigrationState.FAILED)

    @patch('live_migration.migration.auxiliary.os.kill')
    def test_abort_after_done(self, mock_kill):
        """Test that aborting a finished target keeps it done."""
        self.config.lazy = True
        self.run_rounds(1)
        self.target.start_lazy_pages()
        self.target.restore()

        self.target.abort()

        self.assertEqual(self.target.state.state, MigrationState.DONE)
        mock_kill.assert_called_once_with(500, signal.SIGKILL)


if __name__ == '__main__':
    unittest.main()
