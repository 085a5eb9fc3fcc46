"""
Handles for auxiliary processes the engine starts on our behalf.
"""

import os
import signal
import logging
from typing import Optional

from live_migration.engine.protocol import OperationResponse
from live_migration.errors import AuxiliaryProcessError, IterationFailed, ProtocolViolation


class AuxiliaryProcess:
    """A page-server or lazy-pages process, owned until waited on once."""

    def __init__(self, name: str, pid: int, port: Optional[int] = None):
        self.name = name
        self.pid = pid
        self.port = port
        self.exit_code: Optional[int] = None
        self._waited = False
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_response(cls, name: str, response: OperationResponse) -> "AuxiliaryProcess":
        """Take the process id (and port) reported in an engine response."""
        info = response.page_server
        if info is None or not info.pid:
            raise ProtocolViolation(f"Engine did not report a pid for {name}")
        return cls(name, info.pid, info.port)

    @property
    def waited(self) -> bool:
        return self._waited

    def wait(self) -> int:
        """
        Block until the process exits.

        Returns:
            int: Exit code (always 0; failures raise)

        Raises:
            AuxiliaryProcessError: If the handle was already waited on
            IterationFailed: If the process cannot be reaped or exits non-zero
        """
        if self._waited:
            raise AuxiliaryProcessError(f"{self.name} (pid {self.pid}) was already waited on")
        self._waited = True

        try:
            _, status = os.waitpid(self.pid, 0)
        except OSError as e:
            raise IterationFailed(self.name, self.pid, reason=f"cannot wait: {e}")

        self.exit_code = os.waitstatus_to_exitcode(status)
        if self.exit_code != 0:
            self.logger.error(f"{self.name} (pid {self.pid}) exited with {self.exit_code}")
            raise IterationFailed(self.name, self.pid, self.exit_code)

        self.logger.info(f"{self.name} (pid {self.pid}) finished")
        return self.exit_code

    def kill(self, sig: int = signal.SIGKILL) -> bool:
        """
        Signal a process that will not be waited on.

        Returns:
            bool: True if the signal was delivered
        """
        if self._waited:
            return False
        try:
            os.kill(self.pid, sig)
        except ProcessLookupError:
            self.logger.debug(f"{self.name} (pid {self.pid}) already gone")
            return False
        self.logger.warning(f"Killed {self.name} (pid {self.pid}) with signal {sig}")
        return True

    def __repr__(self) -> str:
        return f"AuxiliaryProcess(name={self.name!r}, pid={self.pid}, port={self.port})"
