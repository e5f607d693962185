import struct

import msgspec

from messages import (
    BAD_REQUEST,
    SERVER_SHUTTING_DOWN,
    ClientMessage,
    ErrorMessage,
    ServerMessage,
)

PROTOCOL_VERSION = 1
MAX_PAYLOAD_SIZE = 0xFFFF


class DecodeError(Exception):
    """Raised when bytes cannot be decoded into a message envelope."""


class FrameError(DecodeError):
    """Raised when a frame header is not a valid header for this protocol."""


_client_encoder = msgspec.msgpack.Encoder()
_server_encoder = msgspec.msgpack.Encoder()
_client_decoder = msgspec.msgpack.Decoder(ClientMessage)
_server_decoder = msgspec.msgpack.Decoder(ServerMessage)


def encode_client(message: ClientMessage) -> bytes:
    return _client_encoder.encode(message)


def encode_server(message: ServerMessage) -> bytes:
    return _server_encoder.encode(message)


def decode_client(data: bytes) -> ClientMessage:
    try:
        return _client_decoder.decode(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        raise DecodeError(str(e)) from e


def decode_server(data: bytes) -> ServerMessage:
    try:
        return _server_decoder.decode(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        raise DecodeError(str(e)) from e


def error_payload(content: str) -> bytes:
    return encode_server(ServerMessage(message=ErrorMessage(content=content)))


BAD_REQUEST_PAYLOAD = error_payload(BAD_REQUEST)
SHUTDOWN_NOTICE_PAYLOAD = error_payload(SERVER_SHUTTING_DOWN)


class Protocol:
    HEADER_FMT = '<H H'  # little-endian: H=version, H=payload_size
    HEADER_SIZE = struct.calcsize(HEADER_FMT)

    @staticmethod
    def recv_exact(conn, n: int) -> bytes:
        buf = b''
        while len(buf) < n:
            chunk = conn.recv(n - len(buf))
            if not chunk:
                raise ConnectionError("Connection closed")
            buf += chunk
        return buf

    @classmethod
    def read_message(cls, conn) -> bytes:
        """
        Read one frame and return its payload.

        A header with the wrong version raises FrameError before any payload
        is read, since its size field cannot be trusted.
        """
        header = cls.recv_exact(conn, cls.HEADER_SIZE)
        version, size = struct.unpack(cls.HEADER_FMT, header)
        if version != PROTOCOL_VERSION:
            raise FrameError(f"Unsupported protocol version {version}")
        return cls.recv_exact(conn, size) if size else b''

    @classmethod
    def make_frame(cls, payload: bytes) -> bytes:
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise ValueError(f"Payload of {len(payload)} bytes exceeds {MAX_PAYLOAD_SIZE}")
        header = struct.pack(cls.HEADER_FMT, PROTOCOL_VERSION, len(payload))
        return header + payload
