"""
Shared fixtures: a live server on an ephemeral loopback port and a client factory.
"""

import threading
import time
from typing import Callable, Generator, List

import pytest

from client import Client
from server import Server


def start_server(pool_size: int = 2, **kwargs) -> tuple[Server, threading.Thread]:
    kwargs.setdefault("poll_interval", 0.05)
    kwargs.setdefault("drain_timeout", 3.0)
    server = Server(host="127.0.0.1", port=0, pool_size=pool_size, **kwargs)
    thread = threading.Thread(target=server.start, name="accept-loop", daemon=True)
    thread.start()
    assert server.wait_until_running(timeout=5), "server did not start"
    return server, thread


@pytest.fixture
def server() -> Generator[Server, None, None]:
    server, thread = start_server(pool_size=2)
    yield server
    server.stop()
    thread.join(timeout=5)


@pytest.fixture
def make_client(server: Server) -> Generator[Callable[[], Client], None, None]:
    clients: List[Client] = []

    def create() -> Client:
        host, port = server.address
        client = Client(host, port, timeout_ms=5000)
        client.connect()
        clients.append(client)
        return client

    yield create

    for client in clients:
        client.disconnect()


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
