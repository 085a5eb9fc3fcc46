#!/usr/bin/env python3
"""
Settings manager for pre-copy live migration.
Handles engine defaults, JSON overrides and per-migration configuration.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional


class MigrationSettings:
    """Engine and convergence settings manager."""
    
    def __init__(self, config_file: Optional[str] = None):
        self.settings = self._load_default_settings()
        if config_file:
            self.load_from_file(config_file)
            
    def _load_default_settings(self) -> Dict:
        """Load default migration settings."""
        return {
            'engine_binary': 'criu',
            'log_level': 4,
            'log_files': {
                'pre_dump': 'pre-dump.log',
                'dump': 'dump.log',
                'page_server': 'ps.log',
                'lazy_pages': 'lp.log',
                'restore': 'restore.log'
            },
            'max_iterations': 10,
            'min_pages': 64,
            'max_growth_percent': 10,
            'image_suffix': '.img'
        }
        
    def load_from_file(self, config_file: str) -> None:
        """Load settings from JSON file."""
        config_path = Path(config_file)
        if config_path.exists():
            with open(config_path, 'r') as f:
                file_settings = json.load(f)
            log_files = dict(self.settings['log_files'])
            log_files.update(file_settings.pop('log_files', {}))
            self.settings.update(file_settings)
            self.settings['log_files'] = log_files
                
    def save_to_file(self, config_file: str) -> None:
        """Save current settings to JSON file."""
        with open(config_file, 'w') as f:
            json.dump(self.settings, f, indent=2)
            
    def get(self, key: str, default=None):
        """Get a setting value."""
        return self.settings.get(key, default)
        
    def set(self, key: str, value) -> None:
        """Set a setting value."""
        self.settings[key] = value
        
    def log_file(self, operation: str) -> str:
        """Get the engine log file name for an operation."""
        return self.settings['log_files'].get(operation, f"{operation}.log")


@dataclass
class MigrationConfig:
    """Configuration for one process migration."""
    pid: int
    memory_fd: int
    work_dir: str
    lazy: bool = False
    leave_running: bool = False
    tcp_established: bool = True
    shell_job: bool = True
    ext_unix_sk: bool = True
    file_locks: bool = True
