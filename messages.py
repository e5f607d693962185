# messages.py

from typing import Annotated, Optional, Union

import msgspec

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

Int32 = Annotated[int, msgspec.Meta(ge=INT32_MIN, le=INT32_MAX)]


class EchoMessage(msgspec.Struct, tag="echo"):
    content: str


class AddRequest(msgspec.Struct, tag="add_request"):
    a: Int32
    b: Int32


class AddResponse(msgspec.Struct, tag="add_response"):
    result: Int32


class ErrorMessage(msgspec.Struct, tag="error"):
    content: str


class ClientMessage(msgspec.Struct):
    # None is the empty oneof: the envelope decoded but carries no request
    message: Optional[Union[EchoMessage, AddRequest]] = None


class ServerMessage(msgspec.Struct):
    message: Optional[Union[EchoMessage, AddResponse, ErrorMessage]] = None


BAD_REQUEST = "bad request"
SERVER_SHUTTING_DOWN = "server shutting down"


def wrap_int32(value: int) -> int:
    """Reduce ``value`` to a signed 32-bit integer using two's-complement wrap."""
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value > INT32_MAX else value
