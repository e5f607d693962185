#!/usr/bin/env python3
import argparse
import logging
import signal
import socket
import sys
import threading
from enum import Enum
from typing import Optional, Tuple

from connection import ConnectionHandle, ConnectionHandler, RunningFlag
from env import PORT_FILE, Env, load_env, read_port_file
from pool import PoolClosedError, WorkerPool
from registry import ConnectionRegistry


class ServerState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class Server:
    """
    Accepts connections and hands each one to the worker pool.

    ``start()`` blocks in the accept loop on the calling thread; ``stop()`` is
    called from any other thread (or a signal handler) and is idempotent.
    """

    def __init__(
        self,
        host: str = '127.0.0.1',
        port: int = 8080,
        pool_size: int = 15,
        poll_interval: float = 0.1,
        io_timeout: float = 5.0,
        drain_timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.poll_interval = poll_interval
        self.io_timeout = io_timeout
        self.drain_timeout = drain_timeout

        self.state = ServerState.STARTING
        self.running = RunningFlag()
        self.registry = ConnectionRegistry()
        self.pool = WorkerPool(pool_size)

        self._server_socket: Optional[socket.socket] = None
        self._state_lock = threading.Lock()
        self._ready = threading.Event()
        self._accept_done = threading.Event()
        self._stopped = threading.Event()
        self._accept_thread: Optional[threading.Thread] = None

    @classmethod
    def from_env(cls, env: Env) -> "Server":
        return cls(
            host=env.TCP_SERVER_HOST,
            port=env.TCP_SERVER_PORT,
            pool_size=env.TCP_SERVER_POOL_SIZE,
            poll_interval=env.TCP_SERVER_POLL_INTERVAL,
            io_timeout=env.TCP_SERVER_IO_TIMEOUT,
            drain_timeout=env.TCP_SERVER_DRAIN_TIMEOUT,
        )

    @property
    def address(self) -> Tuple[str, int]:
        return self.host, self.port

    def wait_until_running(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def start(self) -> None:
        """Bind, listen and run the accept loop until ``stop()`` is called."""
        with self._state_lock:
            if self.state is not ServerState.STARTING:
                raise RuntimeError(f"Server cannot start from state {self.state.value}")

            server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                server_socket.bind((self.host, self.port))
                server_socket.listen()
            except OSError:
                server_socket.close()
                raise
            server_socket.settimeout(self.poll_interval)

            self.port = server_socket.getsockname()[1]
            self._server_socket = server_socket
            self._accept_thread = threading.current_thread()
            self.running.start()
            self.state = ServerState.RUNNING

        logging.info(f"Server listening on {self.host}:{self.port}")
        self._ready.set()

        try:
            self._accept_loop(server_socket)
        finally:
            self._accept_done.set()
            logging.info("Server stopped accepting connections")

    serve_forever = start

    def _accept_loop(self, server_socket: socket.socket) -> None:
        while self.running.running:
            try:
                conn, addr = server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self.running.running:
                    break
                logging.error(f"Error accepting connection: {e}")
                continue

            logging.info(f"New client connected: {addr}")
            conn.settimeout(self.io_timeout)
            handle = ConnectionHandle(conn, addr)
            self.registry.register(handle)
            handler = ConnectionHandler(
                handle,
                self.registry,
                self.running,
                poll_interval=self.poll_interval,
            )

            try:
                self.pool.submit(handler)
            except PoolClosedError:
                logging.warning(f"Server is draining, turning away {addr}")
                try:
                    handle.send_shutdown_notice()
                except OSError as e:
                    logging.debug(f"Shutdown notice to {addr} failed: {e}")
                handler.close()

    def stop(self, force: bool = False) -> None:
        """
        Stop the server: flip the running flag, notify every connection,
        drain the pool and close the listener. Safe to call more than once.
        """
        with self._state_lock:
            already_stopping = self.state in (ServerState.DRAINING, ServerState.STOPPED)
            if not already_stopping:
                never_started = self.state is ServerState.STARTING
                self.state = ServerState.DRAINING
                self.running.stop()

        if already_stopping:
            logging.debug("Server was already stopped or is stopping")
            self._stopped.wait(timeout=self.drain_timeout + 1)
            return

        if never_started:
            self.pool.shutdown(wait=True, timeout=self.drain_timeout)
            with self._state_lock:
                self.state = ServerState.STOPPED
            self._stopped.set()
            return

        logging.info("Server stopping, notifying clients...")
        self.registry.broadcast_shutdown()

        abandoned = self.pool.shutdown(
            wait=True,
            timeout=self.drain_timeout,
            cancel_pending=force,
        )
        for handler in abandoned:
            if isinstance(handler, ConnectionHandler):
                handler.close()

        if threading.current_thread() is not self._accept_thread:
            self._accept_done.wait(timeout=self.poll_interval * 10)

        if self._server_socket is not None:
            self._server_socket.close()

        self._close_stragglers()

        with self._state_lock:
            self.state = ServerState.STOPPED
        self._stopped.set()
        logging.info("Server stopped.")

    def _close_stragglers(self) -> None:
        """
        Close connections whose handler outlived the drain, e.g. one blocked
        mid-frame in recv. Shutting the socket down unblocks that recv; the
        handler's own close() then finds the handle already unregistered.
        """
        stragglers = self.registry.snapshot()
        if not stragglers:
            return
        logging.warning(f"{len(stragglers)} connection(s) still open after drain, closing")
        for handle in stragglers:
            handle.close()
            self.registry.unregister(handle)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Threaded echo/add TCP server")
    parser.add_argument("--host", help="Address to bind")
    parser.add_argument("--port", type=int, help=f"Port to listen on (falls back to {PORT_FILE})")
    parser.add_argument("--pool-size", type=int, help="Number of worker threads")
    parser.add_argument("--drain-timeout", type=float, help="Seconds to wait for workers on shutdown")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Logging level",
    )
    parser.add_argument("--env-file", help="dotenv file to read (default: .env)")
    return parser.parse_args(argv)


def build_env(args: argparse.Namespace) -> Env:
    env = load_env(Env, env_file=args.env_file)

    overrides = {}
    if args.host is not None:
        overrides["TCP_SERVER_HOST"] = args.host
    if args.port is not None:
        overrides["TCP_SERVER_PORT"] = args.port
    elif "TCP_SERVER_PORT" not in env.model_fields_set:
        overrides["TCP_SERVER_PORT"] = read_port_file(default=env.TCP_SERVER_PORT)
    if args.pool_size is not None:
        overrides["TCP_SERVER_POOL_SIZE"] = args.pool_size
    if args.drain_timeout is not None:
        overrides["TCP_SERVER_DRAIN_TIMEOUT"] = args.drain_timeout
    if args.log_level is not None:
        overrides["TCP_SERVER_LOG_LEVEL"] = args.log_level

    return Env.model_validate({**env.model_dump(), **overrides})


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    env = build_env(args)
    logging.getLogger().setLevel(env.TCP_SERVER_LOG_LEVEL.upper())

    server = Server.from_env(env)

    def handle_sigterm(signum, frame):
        # the accept loop runs on this thread, so stop from a helper thread
        threading.Thread(target=server.stop, name="shutdown", daemon=True).start()

    signal.signal(signal.SIGTERM, handle_sigterm)

    try:
        server.start()
    except OSError as e:
        logging.critical(f"Failed to bind {env.TCP_SERVER_HOST}:{env.TCP_SERVER_PORT}: {e}")
        return 1
    except KeyboardInterrupt:
        logging.info("Interrupted")
    finally:
        server.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
