"""Application settings read from the environment and an optional .env file."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields

from dotenv import dotenv_values

log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """An environment variable holds a value that cannot be used."""


@dataclass(frozen=True)
class Config:
    log_level: int = logging.DEBUG
    log_format: str = "text"
    host: str = "localhost"
    port: int = 8000
    database_filename: str = "./database.json"
    default_mode: str = "OFF"
    default_target_temperature: int = 20
    pubsub_host: str = "localhost"
    pubsub_port: int = 1883
    pubsub_client_id: str = "thermofridge-api"
    pubsub_qos: int = 1


_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def _parse_level(raw: str) -> int:
    if raw.lower() not in _LEVELS:
        raise ValueError(f"unknown log level {raw!r}")
    return _LEVELS[raw.lower()]


def _integer(pattern: str, limit: int | None = None) -> Callable[[str], int]:
    def parse(raw: str) -> int:
        if not re.fullmatch(pattern, raw):
            raise ValueError(f"invalid integer {raw!r}")
        if limit is not None and int(raw) > limit:
            raise ValueError(f"value {raw!r} out of range [0,{limit}]")
        return int(raw)

    return parse


_PARSERS: dict[str, Callable[[str], object]] = {
    "log_level": _parse_level,
    "port": _integer(r"\+?\d+", 0xFFFF),
    "default_target_temperature": _integer(r"[+-]?\d+"),
    "pubsub_port": _integer(r"\+?\d+", 0xFFFF),
    "pubsub_qos": _integer(r"\+?\d+", 0xFF),
}


def load_config(
    environ: Mapping[str, str] | None = None,
    dotenv_path: str | os.PathLike[str] | None = ".env",
) -> Config:
    """Build the configuration; real environment values win over the .env file."""
    values: dict[str, str] = {}
    if dotenv_path is not None:
        if os.path.isfile(dotenv_path):
            values.update((k, v) for k, v in dotenv_values(dotenv_path).items() if v is not None)
        else:
            log.debug("error loading .env file: %s not found", os.fspath(dotenv_path))
    values.update(os.environ if environ is None else environ)

    settings: dict[str, object] = {}
    for field in fields(Config):
        variable = field.name.upper()
        raw = values.get(variable)
        if not raw:
            continue
        try:
            settings[field.name] = _PARSERS.get(field.name, str)(raw)
        except ValueError as exc:
            raise ConfigError(f"error processing environment variables: {variable}: {exc}") from exc

    return Config(**settings)