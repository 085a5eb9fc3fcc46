"""
Checkpoint/restore engine client.

This module provides the operation protocol, request builders, lifecycle
callback dispatch and the transport that talks to an engine worker.
"""

from .protocol import (
    RequestKind,
    EngineOptions,
    PageServerInfo,
    OperationRequest,
    OperationResponse,
    Notification,
)
from .callbacks import PausePoint, LifecycleCallbacks
from .transport import EngineTransport, lend_directory

__all__ = [
    'RequestKind',
    'EngineOptions',
    'PageServerInfo',
    'OperationRequest',
    'OperationResponse',
    'Notification',
    'PausePoint',
    'LifecycleCallbacks',
    'EngineTransport',
    'lend_directory'
]
