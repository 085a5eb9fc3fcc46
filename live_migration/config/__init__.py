"""
Configuration for the migration control plane.

Engine-wide settings load from JSON over built-in defaults; each migration
is described by its own MigrationConfig.
"""

from .settings import MigrationSettings, MigrationConfig

__all__ = ['MigrationSettings', 'MigrationConfig']
