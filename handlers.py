# handlers.py

import logging
from typing import Any, Callable, Dict

from messages import (
    AddRequest,
    AddResponse,
    EchoMessage,
    ServerMessage,
    wrap_int32,
)
from protocol import BAD_REQUEST_PAYLOAD, DecodeError, decode_client, encode_server


def handle_echo(message: EchoMessage) -> EchoMessage:
    """
    Handle echo requests.
    Return the same content unchanged.
    """
    logging.info(f"Received echo request: {message.content!r}")
    return EchoMessage(content=message.content)


def handle_add(message: AddRequest) -> AddResponse:
    """
    Handle add requests.
    The sum wraps to int32 the same way the wire fields are declared.
    """
    logging.info(f"Received add request: {message.a} + {message.b}")
    return AddResponse(result=wrap_int32(message.a + message.b))


# map request types to handler functions
HANDLERS: Dict[type, Callable[[Any], Any]] = {
    EchoMessage: handle_echo,
    AddRequest: handle_add,
}


def bad_request() -> bytes:
    return BAD_REQUEST_PAYLOAD


def dispatch(data: bytes) -> bytes:
    """
    Decode one request envelope, run its handler and return the encoded reply.

    Never raises: anything that cannot be decoded or handled becomes an
    ``ErrorMessage("bad request")``.
    """
    try:
        request = decode_client(data)
    except DecodeError as e:
        logging.warning(f"Failed to decode request: {e}")
        return bad_request()

    message = request.message
    if message is None:
        logging.warning("Received envelope with no message set")
        return bad_request()

    handler = HANDLERS.get(type(message))
    if handler is None:
        logging.warning(f"No handler for message type {type(message).__name__}")
        return bad_request()

    try:
        return encode_server(ServerMessage(message=handler(message)))
    except Exception:
        logging.exception(f"Handler {handler.__name__} failed")
        return bad_request()
