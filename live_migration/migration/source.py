"""
Migration Source for pre-copy live migration.

This module drives the migration from the sending host: it runs pre-dump
rounds against the local process while the target receives each round's
pages, decides convergence, takes the final dump, and hands the process
over to the target from inside the engine's after-snapshot pause.
"""

import os
import time
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from live_migration.config.settings import MigrationConfig, MigrationSettings
from live_migration.engine.callbacks import LifecycleCallbacks
from live_migration.engine.requests import make_dump_request, make_pre_dump_request
from live_migration.engine.transport import EngineTransport, lend_directory
from live_migration.errors import CallbackFailed, MigrationError, ProtocolViolation, SnapshotIOError

from .convergence import ConvergencePolicy, IterationStats, StatsReader, no_stats, policy_from_settings
from .snapshot_chain import SnapshotChain, SnapshotRound
from .state import MigrationState, MigrationStateMachine
from .target import MigrationTarget


@dataclass
class MigrationResult:
    """Result of migration operation."""
    success: bool
    state: MigrationState
    pid: int
    lazy: bool
    rounds: int = 0
    iteration_stats: List[IterationStats] = field(default_factory=list)
    restored_pid: Optional[int] = None
    migration_time: Optional[float] = None


class MigrationSource(LifecycleCallbacks):
    """Sending side of one migration."""

    def __init__(self, config: MigrationConfig, target: MigrationTarget,
                 settings: Optional[MigrationSettings] = None,
                 policy: Optional[ConvergencePolicy] = None,
                 stats_reader: Optional[StatsReader] = None):
        """
        Initialize migration source.

        Args:
            config: Migration configuration for the local process
            target: Receiving side; its images root must share a filesystem
                with config.work_dir for the final merge
            settings: Engine and convergence settings
            policy: Convergence policy (defaults to thresholds from settings)
            stats_reader: Reads per-round statistics after each pre-dump
        """
        self.config = config
        self.target = target
        self.settings = settings or MigrationSettings()
        self.policy = policy or policy_from_settings(self.settings)
        self.stats_reader = stats_reader or no_stats
        self.logger = logging.getLogger(__name__)

        self.transport = EngineTransport(self.settings.get("engine_binary"))
        self.chain = SnapshotChain(os.path.join(config.work_dir, "rounds"))
        self.final_dir = os.path.join(os.path.abspath(config.work_dir), "final")
        self.state = MigrationStateMachine("source")

        self.iteration_stats: List[IterationStats] = []
        self._current_round: Optional[SnapshotRound] = None
        self._round_started: Optional[float] = None

    @property
    def is_lazy(self) -> bool:
        return self.config.lazy

    def start_iteration(self) -> SnapshotRound:
        """
        Run one pre-dump round.

        The target opens its next round and starts a page server first; the
        local pre-dump then streams this round's pages to it, taken against
        the previous local round.

        Returns:
            SnapshotRound: The local round directory
        """
        self.state.advance(MigrationState.ITERATING)
        with self.state.guard():
            self._round_started = time.time()
            self.target.start_iteration()

            with self.chain.open_next_round() as snapshot_round:
                self.logger.info(f"* Iteration {snapshot_round.index}")
                request = make_pre_dump_request(
                    self.config, self.settings, snapshot_round.fd, snapshot_round.parent
                )
                self.transport.call(request)

            self._current_round = snapshot_round
            self.logger.info("\tPre-dump succeeded")
        return snapshot_round

    def stop_iteration(self) -> IterationStats:
        """
        Wait for the target's page server and collect the round's statistics.

        Returns:
            IterationStats: Statistics of the round that just finished
        """
        self.state.advance(MigrationState.STOPPING)
        with self.state.guard():
            self.target.stop_iteration()
            stats = self.stats_reader(self._current_round)
            if stats.duration is None and self._round_started is not None:
                stats.duration = time.time() - self._round_started
            self.iteration_stats.append(stats)
        return stats

    def converged(self) -> bool:
        """Ask the convergence policy whether to stop iterating."""
        if not self.iteration_stats:
            return False
        previous = self.iteration_stats[-2] if len(self.iteration_stats) > 1 else None
        return self.policy.should_stop(len(self.iteration_stats) - 1, self.iteration_stats[-1], previous)

    def finalize(self) -> None:
        """
        Take the final dump and hand the process over.

        In both modes the target first opens one more round for the dump's
        pages. Eager mode dumps into a fresh local directory against the last
        round; lazy mode dumps into the target's image root and leaves the
        memory to the on-demand listener. The target is restored from inside
        the after-snapshot pause, so this blocks until restore completes.

        Raises:
            MigrationError: A failure during hand-off is raised as itself,
                not wrapped in CallbackFailed
        """
        self.state.advance(MigrationState.FINAL_DUMP)
        with self.state.guard():
            self.target.start_iteration()
            if self.is_lazy:
                images_dir = self.target.images_root()
                parent = None
            else:
                try:
                    os.mkdir(self.final_dir, 0o700)
                except OSError as e:
                    raise SnapshotIOError(e.errno, f"Cannot create final dump directory {self.final_dir}: {e.strerror}")
                images_dir = self.final_dir
                parent = self.chain.relative_to_last(self.final_dir)

            self.logger.info(f"Final dump into {images_dir}")
            with lend_directory(images_dir) as images_dir_fd:
                request = make_dump_request(self.config, self.settings, images_dir_fd, parent)
                try:
                    self.transport.call(request, self)
                except CallbackFailed as e:
                    if isinstance(e.__cause__, MigrationError):
                        raise e.__cause__
                    raise

            if self.state.state is not MigrationState.RESTORING:
                raise ProtocolViolation("Final dump completed without an after-snapshot pause")

        self.state.advance(MigrationState.DONE)
        self.logger.info("Dump complete")

    def after_snapshot(self) -> None:
        """Hand-off point: the source is frozen and fully dumped."""
        self.state.advance(MigrationState.HAND_OFF)
        self.target.stop_iteration()
        if self.is_lazy:
            self.target.start_lazy_pages()
            self.state.advance(MigrationState.RESTORING)
            self.target.restore()
        else:
            self.state.advance(MigrationState.RESTORING)
            self.target.restore(self.final_dir)

    def migrate(self) -> MigrationResult:
        """
        Iterate until converged, then finalize.

        Returns:
            MigrationResult: Summary of the completed migration

        Raises:
            MigrationError: On the first unrecovered failure; partial round
                directories are left in place
        """
        start_time = time.time()
        self.logger.info(f"Starting migration of pid {self.config.pid} (lazy: {self.is_lazy})")

        try:
            while True:
                self.start_iteration()
                self.stop_iteration()
                if self.converged():
                    break
                self.logger.info("\t> Proceed to next iteration")

            self.logger.info("Final dump and restore")
            self.finalize()
        except Exception as e:
            self.logger.error(f"Migration failed in state {self.state.state.value}: {e}")
            self.state.fail()
            self.target.abort()
            raise
        finally:
            self.transport.disconnect()

        result = MigrationResult(
            success=True,
            state=self.state.state,
            pid=self.config.pid,
            lazy=self.is_lazy,
            rounds=len(self.iteration_stats),
            iteration_stats=list(self.iteration_stats),
            restored_pid=self.target.restored_pid,
            migration_time=time.time() - start_time
        )
        self.logger.info(f"Migration completed in {result.migration_time:.2f} seconds")
        return result
