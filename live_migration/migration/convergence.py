"""
Convergence policies for pre-dump iterations.

A policy looks at the statistics of the round that just finished (and the
one before it) and decides whether to stop iterating and take the final
dump.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from live_migration.config.settings import MigrationSettings

from .snapshot_chain import SnapshotRound


logger = logging.getLogger(__name__)


@dataclass
class IterationStats:
    """Statistics for one pre-dump round."""
    round_index: int
    pages_written: Optional[int] = None
    duration: Optional[float] = None


StatsReader = Callable[[SnapshotRound], IterationStats]


def no_stats(snapshot_round: SnapshotRound) -> IterationStats:
    """Stats reader for engines that report nothing."""
    return IterationStats(round_index=snapshot_round.index)


class ConvergencePolicy(ABC):
    """Decides when the iteration loop has converged."""

    @abstractmethod
    def should_stop(self, iteration: int, stats: IterationStats,
                    previous: Optional[IterationStats]) -> bool:
        """
        Args:
            iteration: Zero-based index of the round that just finished
            stats: Statistics of that round
            previous: Statistics of the round before, if any

        Returns:
            bool: True to stop iterating and take the final dump
        """


class IterationBudget(ConvergencePolicy):
    """Stop after a fixed number of rounds."""

    def __init__(self, max_iterations: int = 10):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_iterations = max_iterations

    def should_stop(self, iteration, stats, previous):
        if iteration + 1 >= self.max_iterations:
            logger.info("Iteration budget exhausted")
            return True
        return False


class DirtyPageConvergence(IterationBudget):
    """
    Stop when a round is small, when rounds start growing, or when the
    iteration budget runs out. Rounds without page counts only consume
    budget.
    """

    def __init__(self, max_iterations: int = 10, min_pages: int = 64,
                 max_growth_percent: int = 10):
        super().__init__(max_iterations)
        self.min_pages = min_pages
        self.max_growth_percent = max_growth_percent

    def should_stop(self, iteration, stats, previous):
        if super().should_stop(iteration, stats, previous):
            return True

        if stats.pages_written is None:
            return False

        if stats.pages_written <= self.min_pages:
            logger.info(f"Small dump ({stats.pages_written} pages)")
            return True

        if previous is not None and previous.pages_written:
            growth = (stats.pages_written - previous.pages_written) * 100 / previous.pages_written
            if growth > self.max_growth_percent:
                logger.info(f"Iteration grows by {growth:.1f}%")
                return True

        return False


def policy_from_settings(settings: MigrationSettings) -> ConvergencePolicy:
    """Build the default policy from configured thresholds."""
    return DirtyPageConvergence(
        max_iterations=settings.get("max_iterations", 10),
        min_pages=settings.get("min_pages", 64),
        max_growth_percent=settings.get("max_growth_percent", 10)
    )
