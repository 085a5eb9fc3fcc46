"""
Snapshot Directory Chain for iterative migration rounds.

This module manages the ordered sequence of per-round image directories,
computes each round's parent reference, and folds a final dump into the
last round at hand-off.
"""

import os
import errno
import logging
from dataclasses import dataclass
from typing import List, Optional

from live_migration.errors import SnapshotIOError
from live_migration.utils.file_utils import IMAGE_SUFFIX, ensure_directory, hard_link, list_image_files


@dataclass
class SnapshotRound:
    """One round directory; fd is set while the directory is lent out."""
    index: int
    path: str
    parent: Optional[str] = None
    fd: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.fd is not None

    def parent_path(self) -> Optional[str]:
        """Absolute directory the parent reference resolves to."""
        if self.parent is None:
            return None
        return os.path.normpath(os.path.join(self.path, self.parent))

    def close(self) -> None:
        if self.fd is not None:
            os.close(self.fd)
            self.fd = None

    def __enter__(self) -> "SnapshotRound":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()


def _io_error(e: OSError, action: str) -> SnapshotIOError:
    return SnapshotIOError(e.errno or errno.EIO, f"{action}: {e.strerror or e}")


class SnapshotChain:
    """Ordered, append-only chain of snapshot round directories."""

    def __init__(self, root: str):
        """
        Initialize snapshot chain.

        Args:
            root: Directory under which round directories are created
        """
        self.root = os.path.abspath(root)
        self.logger = logging.getLogger(__name__)
        self._rounds: List[SnapshotRound] = []

        try:
            ensure_directory(self.root)
        except OSError as e:
            raise _io_error(e, f"Cannot create snapshot root {self.root}")

    @property
    def rounds(self) -> List[SnapshotRound]:
        return list(self._rounds)

    def __len__(self) -> int:
        return len(self._rounds)

    def last_round_path(self) -> str:
        """
        Get the most recently opened round directory.

        Returns:
            str: Absolute path, or an empty string if no round exists yet
        """
        if not self._rounds:
            return ""
        return self._rounds[-1].path

    def open_next_round(self) -> SnapshotRound:
        """
        Create the next sequential round directory and open it.

        The returned round holds an open directory descriptor until closed;
        use it as a context manager to release the descriptor after the
        engine call that needs it.

        Returns:
            SnapshotRound: New round with its parent reference resolved

        Raises:
            SnapshotIOError: If the directory cannot be created or opened
        """
        index = len(self._rounds)
        path = os.path.join(self.root, str(index))
        previous = self.last_round_path()

        try:
            os.mkdir(path, 0o700)
            fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)
        except OSError as e:
            raise _io_error(e, f"Cannot open snapshot round {path}")

        parent = os.path.relpath(previous, path) if previous else None
        snapshot_round = SnapshotRound(index=index, path=path, parent=parent, fd=fd)
        self._rounds.append(snapshot_round)

        self.logger.info(f"Opened snapshot round {index} at {path} (parent: {parent or 'none'})")
        return snapshot_round

    def relative_to_last(self, directory: str) -> Optional[str]:
        """
        Get the parent reference from a directory outside the chain.

        Args:
            directory: Directory that will use the last round as parent

        Returns:
            Relative path to the last round, or None if the chain is empty
        """
        previous = self.last_round_path()
        if not previous:
            return None
        return os.path.relpath(previous, os.path.abspath(directory))

    def merge_into(self, source_dir: str, target_dir: Optional[str] = None,
                   suffix: str = IMAGE_SUFFIX) -> List[str]:
        """
        Fold a dump directory into a round directory.

        Args:
            source_dir: Directory holding the final dump images
            target_dir: Destination round (defaults to the last round)
            suffix: Image file name suffix

        Returns:
            List of image file names linked into the destination
        """
        destination = target_dir or self.last_round_path()
        if not destination:
            raise SnapshotIOError(errno.ENOENT, "No snapshot round to merge into")
        return merge_images(source_dir, destination, suffix)


def merge_images(source_dir: str, target_dir: str, suffix: str = IMAGE_SUFFIX) -> List[str]:
    """
    Hard-link every image file of source_dir into target_dir.

    Merging the same directories again is a no-op. Both directories must
    live on the same filesystem.

    Args:
        source_dir: Directory with images to fold in
        target_dir: Directory receiving the links
        suffix: Image file name suffix

    Returns:
        List of image names now reachable from target_dir

    Raises:
        SnapshotIOError: If listing or linking fails
    """
    logger = logging.getLogger(__name__)

    try:
        names = list_image_files(source_dir, suffix)
    except OSError as e:
        raise _io_error(e, f"Cannot list images in {source_dir}")

    for name in names:
        source = os.path.join(source_dir, name)
        destination = os.path.join(target_dir, name)
        try:
            if hard_link(source, destination):
                logger.debug(f"Linked {name} -> {target_dir}/")
        except OSError as e:
            if e.errno == errno.EXDEV:
                raise SnapshotIOError(
                    e.errno,
                    f"Cannot link {source} into {target_dir}: directories are on different filesystems"
                )
            raise _io_error(e, f"Cannot link {source} into {target_dir}")

    logger.info(f"Merged {len(names)} images from {source_dir} into {target_dir}")
    return names
