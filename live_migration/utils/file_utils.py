#!/usr/bin/env python3
"""
File utilities for snapshot directory management.
Provides directory creation, image listing and zero-copy linking.
"""

import os
from pathlib import Path
from typing import List

IMAGE_SUFFIX = ".img"


def ensure_directory(path: str, mode: int = 0o700) -> Path:
    """
    Ensure a directory exists, creating it if necessary.
    
    Args:
        path: Directory path to create
        mode: Permission bits for newly created directories
        
    Returns:
        Path object for the directory
    """
    dir_path = Path(path)
    dir_path.mkdir(mode=mode, parents=True, exist_ok=True)
    return dir_path


def list_image_files(directory: str, suffix: str = IMAGE_SUFFIX) -> List[str]:
    """
    List engine image files directly inside a directory.
    
    Args:
        directory: Directory to scan (not recursive)
        suffix: Image file name suffix
        
    Returns:
        Sorted list of matching file names
    """
    names = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.name.endswith(suffix) and entry.is_file(follow_symlinks=False):
                names.append(entry.name)
    return sorted(names)


def same_file(first: str, second: str) -> bool:
    """Check whether two paths refer to the same inode."""
    try:
        return os.path.samefile(first, second)
    except (IOError, OSError):
        return False


def hard_link(source: str, destination: str) -> bool:
    """
    Create a hard link, tolerating an existing link to the same file.
    
    Args:
        source: Existing file
        destination: Link path to create
        
    Returns:
        True if a new link was created, False if it already existed
    """
    try:
        os.link(source, destination)
        return True
    except FileExistsError:
        if same_file(source, destination):
            return False
        raise
