#!/usr/bin/env python3
"""
Tests for Engine request builders.
"""

import unittest

from live_migration.config.settings import MigrationConfig, MigrationSettings
from live_migration.engine.protocol import RequestKind
from live_migration.engine.requests import (
    make_dump_request,
    make_lazy_pages_request,
    make_page_server_request,
    make_pre_dump_request,
    make_restore_request,
)


class TestRequestBuilders(unittest.TestCase):
    """Test cases for the per-operation request builders."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = MigrationConfig(pid=1234, memory_fd=9, work_dir="/tmp/migration")
        self.settings = MigrationSettings()

    def test_pre_dump_request(self):
        """Test that pre-dump streams pages without memory tracking."""
        request = make_pre_dump_request(self.config, self.settings, 5, "../0")

        self.assertEqual(request.kind, RequestKind.PRE_DUMP)
        self.assertEqual(request.options.pid, 1234)
        self.assertEqual(request.options.images_dir_fd, 5)
        self.assertEqual(request.options.parent_img, "../0")
        self.assertEqual(request.options.page_server.fd, 9)
        self.assertFalse(request.options.track_mem)
        self.assertIsNone(request.options.notify_scripts)
        self.assertEqual(request.options.log_file, "pre-dump.log")
        self.assertEqual(request.options.log_level, 4)

    def test_eager_dump_request(self):
        """Test that an eager dump keeps its parent and asks for notifications."""
        request = make_dump_request(self.config, self.settings, 6, "../rounds/2")

        self.assertEqual(request.kind, RequestKind.DUMP)
        self.assertTrue(request.options.track_mem)
        self.assertTrue(request.options.notify_scripts)
        self.assertIsNone(request.options.lazy_pages)
        self.assertEqual(request.options.parent_img, "../rounds/2")
        self.assertTrue(request.options.tcp_established)
        self.assertFalse(request.options.leave_running)
        self.assertEqual(request.options.log_file, "dump.log")

    def test_lazy_dump_request(self):
        """Test that a lazy dump drops the parent reference."""
        self.config.lazy = True

        request = make_dump_request(self.config, self.settings, 6, "../rounds/2")

        self.assertTrue(request.options.lazy_pages)
        self.assertIsNone(request.options.parent_img)

    def test_page_server_child_request(self):
        """Test the default page server runs as a child of the worker."""
        request = make_page_server_request(self.config, self.settings, 7, "../0")

        self.assertEqual(request.kind, RequestKind.PAGE_SERVER_CHILD)
        self.assertEqual(request.options.parent_img, "../0")
        self.assertIsNone(request.options.pid)
        self.assertEqual(request.options.log_file, "ps.log")

    def test_page_server_in_worker_request(self):
        """Test that child=False asks for the plain page server kind."""
        request = make_page_server_request(self.config, self.settings, 7, child=False)

        self.assertEqual(request.kind, RequestKind.PAGE_SERVER)
        self.assertEqual(request.to_message().type, 5)
        self.assertIsNone(request.options.parent_img)
        self.assertEqual(request.options.images_dir_fd, 7)
        self.assertEqual(request.options.page_server.fd, 9)

    def test_lazy_pages_request(self):
        """Test the on-demand listener request."""
        request = make_lazy_pages_request(self.config, self.settings, 8)

        self.assertEqual(request.kind, RequestKind.LAZY_PAGES)
        self.assertTrue(request.options.lazy_pages)
        self.assertEqual(request.options.page_server.fd, 9)
        self.assertEqual(request.options.log_file, "lp.log")

    def test_restore_request(self):
        """Test that restore follows the configured mode."""
        eager = make_restore_request(self.config, self.settings, 3)
        self.config.lazy = True
        lazy = make_restore_request(self.config, self.settings, 3)

        self.assertEqual(eager.kind, RequestKind.RESTORE)
        self.assertFalse(eager.options.lazy_pages)
        self.assertTrue(lazy.options.lazy_pages)
        self.assertIsNone(eager.options.page_server)
        self.assertEqual(eager.options.log_file, "restore.log")

    def test_log_file_override(self):
        """Test that configured log names reach the request."""
        self.settings.settings['log_files']['restore'] = 'target-restore.log'

        request = make_restore_request(self.config, self.settings, 3)

        self.assertEqual(request.options.log_file, 'target-restore.log')


if __name__ == '__main__':
    unittest.main()
