"""
Iterative pre-copy migration.

This module provides the snapshot directory chain, auxiliary process
handles, convergence policies and the source/target orchestrators.
"""

from .snapshot_chain import SnapshotChain, SnapshotRound, merge_images
from .auxiliary import AuxiliaryProcess
from .convergence import ConvergencePolicy, IterationBudget, DirtyPageConvergence, IterationStats
from .state import MigrationState, MigrationStateMachine
from .target import MigrationTarget
from .source import MigrationSource, MigrationResult

__all__ = [
    'SnapshotChain',
    'SnapshotRound',
    'merge_images',
    'AuxiliaryProcess',
    'ConvergencePolicy',
    'IterationBudget',
    'DirtyPageConvergence',
    'IterationStats',
    'MigrationState',
    'MigrationStateMachine',
    'MigrationTarget',
    'MigrationSource',
    'MigrationResult'
]
