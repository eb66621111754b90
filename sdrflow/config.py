"""Runtime configuration loaded from TOML files and the environment."""

from __future__ import annotations

import copy
import functools
import ipaddress
import logging
import os
import re
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, TypeVar

import platformdirs

APP_NAME = "sdrflow"
ENV_PREFIX = "SDRFLOW_"
TRACE = 5

LOG_LEVELS: dict[str, int] = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

T = TypeVar("T")


def _value_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    raise TypeError(f"value {value!r} cannot be read as a string")


def _parse_usize(text: str) -> int:
    if not re.fullmatch(r"\+?[0-9]+", text):
        raise ValueError(f"not an unsigned integer: {text!r}")
    return int(text)


def _parse_int(text: str) -> int:
    if not re.fullmatch(r"[+-]?[0-9]+", text):
        raise ValueError(f"not an integer: {text!r}")
    return int(text)


def _parse_bool(text: str) -> bool:
    if text == "true":
        return True
    if text == "false":
        return False
    raise ValueError(f"not a boolean: {text!r}")


def _parse_level(text: str) -> int:
    try:
        return LOG_LEVELS[text.lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {text!r}") from None


def _parse_socket_addr(text: str) -> tuple[str, int]:
    bracketed = re.fullmatch(r"\[([^\]]+)\]:([0-9]+)", text)
    if bracketed:
        host = ipaddress.IPv6Address(bracketed.group(1))
        port_text = bracketed.group(2)
    else:
        host_text, sep, port_text = text.rpartition(":")
        if not sep or not re.fullmatch(r"[0-9]+", port_text):
            raise ValueError(f"not a socket address: {text!r}")
        host = ipaddress.IPv4Address(host_text)
    port = int(port_text)
    if port > 65535:
        raise ValueError(f"port out of range: {port}")
    return str(host), port


_FIELDS: dict[str, Callable[[str], Any]] = {
    "queue_size": _parse_usize,
    "buffer_size": _parse_usize,
    "log_level": _parse_level,
    "ctrlport_enable": _parse_bool,
    "ctrlport_bind": _parse_socket_addr,
    "frontend_path": Path,
}

_KIND_PARSERS: dict[type, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: _parse_int,
    str: str,
}


@dataclass
class Config:
    """Settings of the runtime; unknown keys are kept in ``misc``."""

    queue_size: int = 8192
    buffer_size: int = 32768
    log_level: int = LOG_LEVELS["info"]
    ctrlport_enable: bool = False
    ctrlport_bind: tuple[str, int] | None = None
    frontend_path: Path | None = None
    misc: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Raise ValueError if the settings contradict each other."""
        if self.ctrlport_enable and self.ctrlport_bind is None:
            raise ValueError("ctrlport enabled but socket not set")


def _default_paths() -> list[Path]:
    user = Path(platformdirs.user_config_dir(APP_NAME)) / "config.toml"
    return [user, Path("config.toml")]


def load_config(
    paths: Iterable[str | os.PathLike[str]] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Merge config files (later ones win) and environment variables."""
    if paths is None:
        paths = _default_paths()
    if environ is None:
        environ = os.environ

    settings: dict[str, Any] = {}
    for entry in paths:
        path = Path(entry)
        if not path.is_file():
            continue
        try:
            with path.open("rb") as fh:
                data = tomllib.load(fh)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            print(f"config error ({path}): {exc}", file=sys.stderr)
            continue
        settings.update((key.lower(), value) for key, value in data.items())

    for key, value in environ.items():
        if key.upper().startswith(ENV_PREFIX) and len(key) > len(ENV_PREFIX):
            settings[key[len(ENV_PREFIX):].lower()] = value

    cfg = Config()
    for key, value in settings.items():
        parser = _FIELDS.get(key)
        if parser is None:
            cfg.misc[key] = value
            continue
        try:
            setattr(cfg, key, parser(_value_to_str(value)))
        except (ValueError, TypeError) as exc:
            raise ValueError(f"invalid config value {key} = {value!r}") from exc

    cfg.validate()
    return cfg


@functools.cache
def config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    return load_config()


def get_value(name: str) -> Any:
    """Return a copy of the raw value of an extra setting, or None."""
    return copy.deepcopy(config().misc.get(name))


def get(name: str, kind: Callable[[str], T]) -> T | None:
    """Return an extra setting converted with ``kind``, or None."""
    value = config().misc.get(name)
    if value is None:
        return None
    try:
        text = _value_to_str(value)
        parser = _KIND_PARSERS.get(kind, kind) if isinstance(kind, type) else kind
        return parser(text)
    except (ValueError, TypeError):
        return None


def get_or_default(name: str, default: T) -> T:
    """Return an extra setting of the same type as ``default``, or ``default``."""
    value = get(name, type(default))
    return default if value is None else value