from __future__ import annotations
import logging
import os
from typing import Callable, Dict, Literal, TypeVar, Union

from dotenv import dotenv_values
from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr

PrimaryType = Union[str, int, float, bool]

T = TypeVar("T", bound=BaseModel)

DEFAULT_PORT = 8080
PORT_FILE = 'myport.info'


class Env(BaseModel):
    TCP_SERVER_HOST: StrictStr = "127.0.0.1"
    TCP_SERVER_PORT: StrictInt = Field(default=DEFAULT_PORT, ge=0, le=65535)
    TCP_SERVER_POOL_SIZE: StrictInt = Field(default=15, ge=1)
    TCP_SERVER_POLL_INTERVAL: StrictFloat = Field(default=0.1, gt=0)
    TCP_SERVER_IO_TIMEOUT: StrictFloat = Field(default=5.0, gt=0)
    TCP_SERVER_DRAIN_TIMEOUT: StrictFloat = Field(default=5.0, ge=0)
    TCP_SERVER_LOG_LEVEL: Literal["debug", "info", "warning", "error", "critical"] = "info"

    @classmethod
    def types_map(cls) -> Dict[str, Callable[[str], PrimaryType]]:
        return {
            "TCP_SERVER_HOST": str,
            "TCP_SERVER_PORT": int,
            "TCP_SERVER_POOL_SIZE": int,
            "TCP_SERVER_POLL_INTERVAL": float,
            "TCP_SERVER_IO_TIMEOUT": float,
            "TCP_SERVER_DRAIN_TIMEOUT": float,
            "TCP_SERVER_LOG_LEVEL": str.lower,
        }


def load_env(default: type[Env], env_file: str | None = None, override: T | None = None) -> T:
    """
    Build the config from model defaults, the process environment, a dotenv
    file and finally ``override``, each source winning over the previous one.
    """
    envars = default.types_map()

    if env_file is None:
        env_file = ".env"

    values: Dict[str, PrimaryType] = {}
    for envar_name, envar_type in envars.items():
        envar_value = os.getenv(envar_name)
        if envar_value:
            values[envar_name] = envar_type(envar_value)

    if env_file and os.path.exists(env_file):
        env_file_values = dotenv_values(dotenv_path=env_file)

        for envar_name, envar_value in env_file_values.items():
            envar_type = envars.get(envar_name)
            if envar_type and envar_value is not None:
                values[envar_name] = envar_type(envar_value)

    if override:
        values.update(**override.model_dump(exclude_unset=True))

        return type(override)(
            **{name: value for name, value in values.items() if value is not None}
        )

    return default(
        **{name: value for name, value in values.items() if value is not None}
    )


def read_port_file(path: str = PORT_FILE, default: int = DEFAULT_PORT) -> int:
    """Read the listening port from a one-line port file, falling back to ``default``."""
    if not os.path.exists(path):
        logging.warning(f"{path} not found, using default port {default}")
        return default

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return int(f.read().strip())
    except ValueError:
        logging.warning(f"Invalid port value in {path}, using default {default}")
        return default
