# connection.py

import logging
import select
import socket
import threading
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

from handlers import bad_request, dispatch
from protocol import SHUTDOWN_NOTICE_PAYLOAD, FrameError, Protocol

if TYPE_CHECKING:
    from registry import ConnectionRegistry


class RunningFlag:
    """
    Process-wide running flag.

    Starts out not running, is started once by the server and stopped once.
    A stopped flag can never be started again.
    """

    def __init__(self):
        self._started = threading.Event()
        self._stopped = threading.Event()

    def start(self) -> None:
        if self._stopped.is_set():
            raise RuntimeError("Running flag cannot be restarted once stopped")
        self._started.set()

    def stop(self) -> None:
        self._stopped.set()

    @property
    def running(self) -> bool:
        return self._started.is_set() and not self._stopped.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()


class ConnectionHandle:
    """
    One accepted socket, shared by its handler and the registry.

    All writes go through the handle's write lock so a shutdown notice can
    never interleave with a response frame.
    """

    def __init__(self, conn: socket.socket, peer: Tuple[str, int]):
        self.conn = conn
        self.peer = peer
        self._write_lock = threading.Lock()
        self._notice_sent = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, payload: bytes) -> None:
        frame = Protocol.make_frame(payload)
        with self._write_lock:
            if self._closed:
                raise ConnectionError(f"Connection to {self.peer} is closed")
            self.conn.sendall(frame)

    def send_shutdown_notice(self, timeout: Optional[float] = None) -> bool:
        """
        Write the shutdown notice unless it was already sent. Returns True if written.

        With a ``timeout``, a peer whose send buffer stays full for that long
        raises ``socket.timeout`` instead of stalling the caller for the
        socket's whole I/O timeout.
        """
        with self._write_lock:
            if self._notice_sent or self._closed:
                return False
            if timeout is not None:
                _, writable, _ = select.select([], [self.conn], [], timeout)
                if not writable:
                    raise socket.timeout(f"{self.peer} not writable within {timeout}s")
            self._notice_sent = True
            self.conn.sendall(Protocol.make_frame(SHUTDOWN_NOTICE_PAYLOAD))
            return True

    def close(self) -> None:
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.conn.close()


class ConnectionState(Enum):
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionHandler:
    """
    Read/dispatch/respond loop for one connection, run as a worker pool job.

    A blocking read cannot be interrupted from another thread, so the loop
    waits for readability in ``poll_interval`` slices and checks the running
    flag between them. The registry's broadcast covers clients that are
    waiting on the server; the check here covers handlers that are between
    reads. Either way the client sees exactly one shutdown notice.
    """

    def __init__(
        self,
        handle: ConnectionHandle,
        registry: "ConnectionRegistry",
        running: RunningFlag,
        poll_interval: float = 0.1,
    ):
        self.handle = handle
        self.state = ConnectionState.ACTIVE
        self._registry = registry
        self._running = running
        self._poll_interval = poll_interval
        self._finish_lock = threading.Lock()
        self._finished = False

    def __call__(self) -> None:
        self.run()

    def run(self) -> None:
        logging.info(f"Handling connection from {self.handle.peer}")
        try:
            while self.state is ConnectionState.ACTIVE:
                if not self._running.running:
                    self._notify_shutdown()
                    break

                if not self._wait_readable():
                    continue
                # stop() may have landed during the select
                if not self._running.running:
                    continue

                try:
                    request = Protocol.read_message(self.handle.conn)
                except FrameError as e:
                    logging.warning(f"Bad frame from {self.handle.peer}: {e}")
                    response = bad_request()
                except ConnectionError as e:
                    logging.info(f"Client {self.handle.peer} disconnected: {e}")
                    break
                except socket.timeout:
                    # the stream is out of sync once a frame is cut short
                    logging.warning(f"Incomplete frame from {self.handle.peer}, closing")
                    self._respond(bad_request())
                    break
                except OSError as e:
                    if self.handle.closed:
                        logging.info(f"Connection to {self.handle.peer} closed by server")
                        break
                    logging.error(f"Failed to read from {self.handle.peer}: {e}")
                    break
                else:
                    response = dispatch(request)

                if not self._respond(response):
                    break
        finally:
            self.close()

    def close(self) -> None:
        """Unregister and close the connection. Only the first call has any effect."""
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True
        self.state = ConnectionState.CLOSED
        self._registry.unregister(self.handle)
        self.handle.close()
        logging.info(f"Connection closed from {self.handle.peer}")

    def _wait_readable(self) -> bool:
        try:
            readable, _, _ = select.select([self.handle.conn], [], [], self._poll_interval)
        except (OSError, ValueError):
            # closed underneath us by the server's stop()
            if self.handle.closed:
                return False
            raise
        return bool(readable)

    def _respond(self, response: bytes) -> bool:
        try:
            try:
                self.handle.send(response)
            except ValueError as e:
                logging.error(f"Response to {self.handle.peer} not sent: {e}")
                self.handle.send(bad_request())
        except OSError as e:
            logging.error(f"Failed to send response to {self.handle.peer}: {e}")
            return False
        return True

    def _notify_shutdown(self) -> None:
        self.state = ConnectionState.CLOSING
        try:
            self.handle.send_shutdown_notice()
        except OSError as e:
            logging.debug(f"Shutdown notice to {self.handle.peer} failed: {e}")
