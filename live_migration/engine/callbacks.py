"""
Lifecycle callbacks invoked while an engine operation is paused.

The engine names its pausing points with strings; they map onto the closed
PausePoint enumeration. Names outside it are answered as a no-op success.
"""

import logging
from enum import Enum
from typing import Optional

from .protocol import Notification


logger = logging.getLogger(__name__)


class PausePoint(Enum):
    """Pausing points the engine may report."""
    BEFORE_SNAPSHOT = "pre-dump"
    AFTER_SNAPSHOT = "post-dump"
    BEFORE_RESTORE = "pre-restore"
    AFTER_RESTORE = "post-restore"
    NETWORK_QUIESCE = "network-lock"
    NETWORK_RESUME = "network-unlock"
    NAMESPACE_SETUP = "setup-namespaces"
    POST_NAMESPACE_SETUP = "post-setup-namespaces"
    POST_RESUME = "post-resume"

    @classmethod
    def from_name(cls, name: str) -> Optional["PausePoint"]:
        """Resolve a wire name, or None for names this side does not know."""
        try:
            return cls(name)
        except ValueError:
            return None


class LifecycleCallbacks:
    """
    Callback sink with one method per pausing point.

    Every method is a no-op here; orchestrators override the ones they need.
    A method that raises aborts the enclosing engine operation.
    """

    def before_snapshot(self) -> None:
        pass

    def after_snapshot(self) -> None:
        pass

    def before_restore(self) -> None:
        pass

    def after_restore(self, pid: Optional[int]) -> None:
        pass

    def network_quiesce(self) -> None:
        pass

    def network_resume(self) -> None:
        pass

    def namespace_setup(self, pid: Optional[int]) -> None:
        pass

    def post_namespace_setup(self) -> None:
        pass

    def post_resume(self) -> None:
        pass


def dispatch_notification(sink: LifecycleCallbacks, notification: Notification) -> Optional[PausePoint]:
    """
    Invoke the sink method matching a notification.

    Args:
        sink: Callback sink
        notification: Notification received from the engine

    Returns:
        The resolved PausePoint, or None if the name was unknown
    """
    point = PausePoint.from_name(notification.point)
    if point is None:
        logger.warning(f"Ignoring unknown pausing point '{notification.point}'")
        return None

    if point is PausePoint.BEFORE_SNAPSHOT:
        sink.before_snapshot()
    elif point is PausePoint.AFTER_SNAPSHOT:
        sink.after_snapshot()
    elif point is PausePoint.BEFORE_RESTORE:
        sink.before_restore()
    elif point is PausePoint.AFTER_RESTORE:
        sink.after_restore(notification.pid)
    elif point is PausePoint.NETWORK_QUIESCE:
        sink.network_quiesce()
    elif point is PausePoint.NETWORK_RESUME:
        sink.network_resume()
    elif point is PausePoint.NAMESPACE_SETUP:
        sink.namespace_setup(notification.pid)
    elif point is PausePoint.POST_NAMESPACE_SETUP:
        sink.post_namespace_setup()
    elif point is PausePoint.POST_RESUME:
        sink.post_resume()
    return point
