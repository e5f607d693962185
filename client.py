#!/usr/bin/env python3
import argparse
import logging
import socket
import sys
from typing import Optional, Union

from env import Env, load_env
from messages import (
    SERVER_SHUTTING_DOWN,
    AddRequest,
    AddResponse,
    ClientMessage,
    EchoMessage,
    ErrorMessage,
    ServerMessage,
)
from protocol import DecodeError, Protocol, decode_server, encode_client

Request = Union[ClientMessage, EchoMessage, AddRequest]


class Client:
    """Blocking client speaking the framed request/response protocol."""

    def __init__(self, host: str, port: int, timeout_ms: int = 1000):
        self.host = host
        self.port = port
        self.timeout = timeout_ms / 1000
        self._sock: Optional[socket.socket] = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> None:
        logging.info(f"Connecting to {self.host}:{self.port}")
        self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)

    def disconnect(self) -> None:
        if self._sock is None:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # the server may already have closed its side
            pass
        self._sock.close()
        self._sock = None
        logging.info("Disconnected from the server")

    def send(self, message: Request) -> None:
        if not isinstance(message, ClientMessage):
            message = ClientMessage(message=message)
        self.send_raw(Protocol.make_frame(encode_client(message)))

    def send_raw(self, data: bytes) -> None:
        self._require_socket().sendall(data)

    def receive(self) -> ServerMessage:
        payload = Protocol.read_message(self._require_socket())
        return decode_server(payload)

    def request(self, message: Request) -> ServerMessage:
        self.send(message)
        return self.receive()

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionError("Client is not connected")
        return self._sock

    def __enter__(self) -> "Client":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.disconnect()


# ---------------------------------------------
#  Helper function to show available commands
# ---------------------------------------------

def print_help():
    print("""
Available commands:
  ECHO <text>
  ADD <a> <b>
  EXIT
""")


def describe(response: ServerMessage) -> str:
    message = response.message
    if isinstance(message, EchoMessage):
        return f"ECHO: {message.content}"
    if isinstance(message, AddResponse):
        return f"RESULT: {message.result}"
    if isinstance(message, ErrorMessage):
        return f"ERROR: {message.content}"
    return "Unrecognized or empty response."


def main(argv=None) -> int:
    env = load_env(Env)
    parser = argparse.ArgumentParser(description="Interactive client for the echo/add server")
    parser.add_argument("--host", default=env.TCP_SERVER_HOST)
    parser.add_argument("--port", type=int, default=env.TCP_SERVER_PORT)
    parser.add_argument("--timeout-ms", type=int, default=5000)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.WARNING)

    with Client(args.host, args.port, args.timeout_ms) as client:
        print(f"Connected to {args.host}:{args.port}.")
        print_help()

        while True:
            try:
                line = input('> ').strip()
            except EOFError:
                break
            if not line:
                continue
            parts = line.split(' ', 1)
            cmd = parts[0].upper()

            if cmd == 'ECHO' and len(parts) == 2:
                message = EchoMessage(content=parts[1])

            elif cmd == 'ADD' and len(parts) == 2:
                try:
                    a, b = (int(x) for x in parts[1].split())
                except ValueError:
                    print("ADD takes two integers.")
                    continue
                message = AddRequest(a=a, b=b)

            elif cmd == 'EXIT':
                print("Exiting.")
                break

            else:
                print("Unknown command or wrong arguments.")
                print_help()
                continue

            try:
                response = client.request(message)
            except ConnectionError:
                print("Server closed connection.")
                break
            except DecodeError as e:
                print(f"Could not decode response: {e}")
                continue

            print(describe(response))
            if isinstance(response.message, ErrorMessage) and response.message.content == SERVER_SHUTTING_DOWN:
                break

    return 0


if __name__ == '__main__':
    sys.exit(main())
