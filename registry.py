# registry.py

import logging
import threading
from typing import List, Set

from connection import ConnectionHandle

# seconds a stalled peer may hold up the broadcast before it is skipped
NOTICE_TIMEOUT = 0.5


class ConnectionRegistry:
    """
    Set of connections whose handler is live, reachable for shutdown notice.

    The lock guards the set mutation only. Notices are written after the
    snapshot is taken so a slow peer never holds up register/unregister.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handles: Set[ConnectionHandle] = set()

    def register(self, handle: ConnectionHandle) -> None:
        with self._lock:
            self._handles.add(handle)

    def unregister(self, handle: ConnectionHandle) -> bool:
        with self._lock:
            if handle not in self._handles:
                return False
            self._handles.remove(handle)
            return True

    def snapshot(self) -> List[ConnectionHandle]:
        with self._lock:
            return list(self._handles)

    def broadcast_shutdown(self, notice_timeout: float = NOTICE_TIMEOUT) -> int:
        """
        Send the shutdown notice to every registered connection.
        Returns how many notices were written by this call; handles that
        already got one, or are closing, are skipped. A peer that cannot take
        the notice within ``notice_timeout`` is logged and skipped.
        """
        notified = 0
        for handle in self.snapshot():
            try:
                if handle.send_shutdown_notice(timeout=notice_timeout):
                    notified += 1
            except OSError as e:
                logging.warning(f"Failed to notify {handle.peer} of shutdown: {e}")
        logging.info(f"Shutdown notice sent to {notified} connection(s)")
        return notified

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, handle: ConnectionHandle) -> bool:
        with self._lock:
            return handle in self._handles
