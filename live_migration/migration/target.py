"""
Migration Target for pre-copy live migration.

This module runs on the receiving host. It owns an engine transport and the
chain of round directories, starts a page server for every round, starts
the on-demand page listener in lazy mode, and restores the process once the
source hands off.
"""

import logging
from typing import Optional

from live_migration.config.settings import MigrationConfig, MigrationSettings
from live_migration.engine.callbacks import LifecycleCallbacks
from live_migration.engine.requests import (
    make_lazy_pages_request,
    make_page_server_request,
    make_restore_request,
)
from live_migration.engine.transport import EngineTransport, lend_directory
from live_migration.errors import AuxiliaryProcessError
from live_migration.utils.file_utils import IMAGE_SUFFIX

from .auxiliary import AuxiliaryProcess
from .snapshot_chain import SnapshotChain
from .state import MigrationState, MigrationStateMachine


class MigrationTarget(LifecycleCallbacks):
    """Receiving side of one migration."""

    def __init__(self, config: MigrationConfig, settings: Optional[MigrationSettings] = None):
        """
        Initialize migration target.

        Args:
            config: Migration configuration; work_dir is the chain root
            settings: Engine and convergence settings
        """
        self.config = config
        self.settings = settings or MigrationSettings()
        self.logger = logging.getLogger(__name__)

        self.transport = EngineTransport(self.settings.get("engine_binary"))
        self.chain = SnapshotChain(config.work_dir)
        self.state = MigrationStateMachine("target")

        self.page_server: Optional[AuxiliaryProcess] = None
        self.lazy_pages: Optional[AuxiliaryProcess] = None
        self.restored_pid: Optional[int] = None

    @property
    def is_lazy(self) -> bool:
        return self.config.lazy

    def images_root(self) -> str:
        """Directory the lazy-mode dump and restore use."""
        return self.chain.root

    def last_round_path(self) -> str:
        return self.chain.last_round_path()

    def start_iteration(self) -> AuxiliaryProcess:
        """
        Open the next round and start a page server writing into it.

        Returns:
            AuxiliaryProcess: The page server, owned until stop_iteration
        """
        self.state.advance(MigrationState.ITERATING)
        with self.state.guard():
            with self.chain.open_next_round() as snapshot_round:
                request = make_page_server_request(
                    self.config, self.settings, snapshot_round.fd, snapshot_round.parent
                )
                response = self.transport.call(request)
            self.page_server = AuxiliaryProcess.from_response("page-server", response)

        self.logger.info(
            f"Round {snapshot_round.index}: page server pid {self.page_server.pid} "
            f"writing to {snapshot_round.path}"
        )
        return self.page_server

    def stop_iteration(self) -> None:
        """
        Wait for the current round's page server to exit.

        Raises:
            AuxiliaryProcessError: If no round has been started
            IterationFailed: If the page server exits abnormally
        """
        if self.page_server is None:
            raise AuxiliaryProcessError("No page server has been started")
        self.state.advance(MigrationState.STOPPING)
        with self.state.guard():
            self.page_server.wait()

    def start_lazy_pages(self) -> AuxiliaryProcess:
        """
        Start the on-demand page listener over the image root.

        Returns immediately; the listener keeps serving page faults after
        restore and is left for the caller to wait on.
        """
        self.state.advance(MigrationState.HAND_OFF)
        with self.state.guard():
            with lend_directory(self.images_root()) as images_dir_fd:
                request = make_lazy_pages_request(self.config, self.settings, images_dir_fd)
                response = self.transport.call(request)
            self.lazy_pages = AuxiliaryProcess.from_response("lazy-pages", response)

        self.logger.info(
            f"Lazy pages listener pid {self.lazy_pages.pid} on port {self.lazy_pages.port}"
        )
        return self.lazy_pages

    def restore(self, hand_off_dir: Optional[str] = None) -> Optional[int]:
        """
        Restore the process from received images.

        Args:
            hand_off_dir: Source's final dump directory, merged into the last
                round before an eager restore; ignored in lazy mode

        Returns:
            Restored process id, if the engine reported one
        """
        self.state.advance(MigrationState.RESTORING)
        with self.state.guard():
            if self.is_lazy:
                images_dir = self.images_root()
            else:
                if hand_off_dir is None:
                    raise ValueError("Eager restore needs the final dump directory")
                images_dir = self.chain.last_round_path()
                self.chain.merge_into(
                    hand_off_dir, images_dir, self.settings.get("image_suffix", IMAGE_SUFFIX)
                )

            self.logger.info(f"Restoring from {images_dir} (lazy: {self.is_lazy})")
            with lend_directory(images_dir) as images_dir_fd:
                request = make_restore_request(self.config, self.settings, images_dir_fd)
                response = self.transport.call(request, self)

            if response.restored_pid:
                self.restored_pid = response.restored_pid

        self.state.advance(MigrationState.DONE)
        self.logger.info(f"Restore complete (pid {self.restored_pid})")
        return self.restored_pid

    def after_restore(self, pid: Optional[int]) -> None:
        if pid:
            self.restored_pid = pid

    def abort(self) -> None:
        """Fail the target and kill auxiliary processes nobody will wait on."""
        self.state.fail()
        for process in (self.page_server, self.lazy_pages):
            if process is not None:
                process.kill()

    def close(self) -> None:
        self.transport.disconnect()

    def __enter__(self) -> "MigrationTarget":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
