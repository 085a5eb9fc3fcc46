"""
Engine Transport for checkpoint/restore operations.

This module owns the connection to one engine worker process and turns each
engine operation into a synchronous exchange, servicing lifecycle
notifications in between until a final result arrives.
"""

import os
import shutil
import socket
import logging
import subprocess
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, Optional

from live_migration.errors import (
    CallbackFailed,
    EngineUnavailable,
    OperationFailed,
    ProtocolViolation,
    SnapshotIOError,
    UnexpectedNotification,
)

from .callbacks import LifecycleCallbacks, dispatch_notification
from .protocol import (
    OperationRequest,
    OperationResponse,
    RequestKind,
    acknowledgment,
    decode_response,
    encode_request,
    recv_message,
    send_message,
)


@contextmanager
def lend_directory(path: str) -> Iterator[int]:
    """
    Open a directory descriptor for the duration of one engine call.

    Args:
        path: Directory to open

    Yields:
        Raw descriptor number, closed when the block exits
    """
    try:
        fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)
    except OSError as e:
        raise SnapshotIOError(e.errno, f"Cannot open images directory {path}: {e.strerror}")
    try:
        yield fd
    finally:
        os.close(fd)


class EngineTransport:
    """Request/response channel to a checkpoint/restore engine worker."""

    def __init__(self, engine_binary: str = "criu"):
        """
        Initialize engine transport.

        Args:
            engine_binary: Engine executable name or path
        """
        self.engine_binary = engine_binary
        self.logger = logging.getLogger(__name__)
        self._sock: Optional[socket.socket] = None
        self._worker: Optional[subprocess.Popen] = None
        self._busy = False

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def worker_pid(self) -> Optional[int]:
        return self._worker.pid if self._worker else None

    def connect(self) -> None:
        """
        Spawn an engine worker bound to a fresh socket pair.

        Raises:
            EngineUnavailable: If the binary is missing or cannot be started
        """
        if self.connected:
            return

        binary = shutil.which(self.engine_binary)
        if binary is None:
            raise EngineUnavailable(f"Engine binary not found or not executable: {self.engine_binary}")

        try:
            local, remote = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        except OSError as e:
            raise EngineUnavailable(f"Cannot create engine socket pair: {e}")

        try:
            remote_fd = remote.fileno()
            worker = subprocess.Popen(
                [binary, "swrk", str(remote_fd)],
                pass_fds=(remote_fd,)
            )
        except OSError as e:
            local.close()
            raise EngineUnavailable(f"Cannot spawn engine worker {binary}: {e}")
        finally:
            remote.close()

        self._sock = local
        self._worker = worker
        self.logger.info(f"Engine worker started (pid {worker.pid})")

    def disconnect(self) -> None:
        """Close the channel and reap the worker. Safe to call repeatedly."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        if self._worker is not None:
            status = self._worker.wait()
            self.logger.info(f"Engine worker {self._worker.pid} exited with status {status}")
            self._worker = None

    def __enter__(self) -> "EngineTransport":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.disconnect()

    def call(self, request: OperationRequest,
             callbacks: Optional[LifecycleCallbacks] = None) -> OperationResponse:
        """
        Run one engine operation to completion.

        Args:
            request: Operation request
            callbacks: Sink for lifecycle notifications, if any are expected

        Returns:
            OperationResponse: Final, non-notification response

        Raises:
            ProtocolViolation: On malformed or mismatched responses, or a
                nested call on this transport
            UnexpectedNotification: If a notification arrives without a sink
            OperationFailed: If the engine reports failure
            CallbackFailed: If a callback raises; the worker is torn down
        """
        if self._busy:
            raise ProtocolViolation(
                f"Transport already has an exchange in flight; refusing nested {request.kind.value}"
            )

        if callbacks is not None and not request.options.notify_scripts:
            request = replace(request, options=replace(request.options, notify_scripts=True))

        self._busy = True
        try:
            self.connect()
            response = self._exchange(request)
            while True:
                self._check_response(request.kind, response)
                if not response.is_notification:
                    return response

                notification = response.notification
                if callbacks is None:
                    raise UnexpectedNotification(notification.point)

                self.logger.debug(f"Engine paused at '{notification.point}' during {request.kind.value}")
                try:
                    dispatch_notification(callbacks, notification)
                except Exception as e:
                    self.logger.error(f"Callback '{notification.point}' failed: {e}")
                    self.disconnect()
                    raise CallbackFailed(notification.point, str(e)) from e

                response = self._exchange(acknowledgment())
        finally:
            self._busy = False

    def _exchange(self, request: OperationRequest) -> OperationResponse:
        """Send one request and read one response."""
        if self._sock is None:
            raise EngineUnavailable("Engine transport is not connected")
        self.logger.debug(f"Sending {request.kind.value} request")
        send_message(self._sock, encode_request(request))
        return decode_response(recv_message(self._sock))

    def _check_response(self, expected: RequestKind, response: OperationResponse) -> None:
        if not response.is_notification and response.kind is not expected:
            raise ProtocolViolation(
                f"Expected {expected.value} response, engine answered {response.kind.value}"
            )
        if not response.success:
            self.logger.error(
                f"Engine {expected.value} failed: {response.error_message} (errno {response.error_code})"
            )
            raise OperationFailed(response.error_code, response.error_message, expected.value)
