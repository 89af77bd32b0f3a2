"""JSON-file backed key/value store holding the thermofridge state."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, TypeVar

from . import metrics
from .errors import NotFoundError
from .model import CurrentState, Mode, OperatingState, TargetState

MODE_KEY = "mode"
TARGET_TEMPERATURE_KEY = "targetTemperature"
OPERATING_STATE_KEY = "operatingState"
CURRENT_TEMPERATURE_KEY = "currentTemperature"

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT_MIN, _INT_MAX = -(1 << 63), (1 << 63) - 1

_E = TypeVar("_E", bound=Enum)
_T = TypeVar("_T")


class DatabaseError(Exception):
    """The database file could not be read or written, or holds a bad value."""


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _enum_or_text(enum_type: type[_E], value: str) -> _E | str:
    try:
        return enum_type(value)
    except ValueError:
        return value


class Database:
    """String key/value pairs kept in memory and mirrored to a JSON file."""

    def __init__(self, filename: str | os.PathLike[str], defaults: Mapping[str, str] | None = None) -> None:
        try:
            descriptor = os.open(filename, os.O_RDWR | os.O_CREAT, 0o644)
            self._file = os.fdopen(descriptor, "r+", encoding="utf-8")
        except OSError as exc:
            raise DatabaseError(f"error opening/creating database file: {exc}") from exc

        try:
            self._data = self._load()
            for key, value in (defaults or {}).items():
                self._data.setdefault(key, value)
            self._write_or_raise()
            try:
                self._prepare_target_state()
            except (DatabaseError, NotFoundError) as exc:
                raise DatabaseError(f"error preparing target state: {exc}") from exc
        except BaseException:
            self._file.close()
            raise

    def _load(self) -> dict[str, str]:
        try:
            text = self._file.read()
        except (OSError, ValueError) as exc:
            raise DatabaseError(f"error decoding json from database file: {exc}") from exc
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise DatabaseError(f"error decoding json from database file: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
            raise DatabaseError(
                "error decoding json from database file: expected an object of strings"
            )
        return data

    def _write(self) -> None:
        try:
            self._file.seek(0)
            self._file.truncate(0)
            self._file.write(json.dumps(self._data, sort_keys=True, separators=(",", ":")) + "\n")
            self._file.flush()
        except (OSError, ValueError) as exc:
            raise DatabaseError(f"error writing database file: {exc}") from exc

    def _write_or_raise(self) -> None:
        try:
            self._write()
        except DatabaseError as exc:
            raise DatabaseError(f"error updating database file: {exc}") from exc

    def close(self) -> None:
        try:
            self._file.close()
        except OSError as exc:
            raise DatabaseError(f"error closing database file: {exc}") from exc

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def get_str(self, key: str) -> str:
        try:
            return self._data[key]
        except KeyError:
            raise NotFoundError(f"key {_quote(key)} not found in database") from None

    def get_int(self, key: str) -> int:
        value = self.get_str(key)
        if not _INT_PATTERN.fullmatch(value):
            raise DatabaseError(f"error converting value {_quote(value)} to int: invalid syntax")
        number = int(value)
        if not _INT_MIN <= number <= _INT_MAX:
            raise DatabaseError(f"error converting value {_quote(value)} to int: value out of range")
        return number

    def get_float(self, key: str) -> float:
        value = self.get_str(key)
        error = DatabaseError(f"error converting value {_quote(value)} to float64: invalid syntax")
        if value != value.strip() or "_" in value:
            raise error
        try:
            return float(value)
        except ValueError:
            raise error from None

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._write_or_raise()

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._write_or_raise()

    def _read(self, getter: Callable[[str], _T], key: str, prefix: str = "") -> _T:
        try:
            return getter(key)
        except (NotFoundError, DatabaseError) as exc:
            raise type(exc)(f"error getting {prefix}{key} from database: {exc}") from exc

    def _store(self, key: str, value: str) -> None:
        try:
            self.set(key, value)
        except DatabaseError as exc:
            raise DatabaseError(f"error setting {key} in database: {exc}") from exc

    def _prepare_target_state(self) -> None:
        mode = self._read(self.get_str, MODE_KEY, "initial ")
        metrics.set_thermofridge_mode(mode)
        temperature = self._read(self.get_int, TARGET_TEMPERATURE_KEY, "initial ")
        metrics.set_thermofridge_target_temperature(temperature)

    def fetch_target_state(self) -> TargetState:
        mode = self._read(self.get_str, MODE_KEY)
        temperature = self._read(self.get_int, TARGET_TEMPERATURE_KEY)
        return TargetState(mode=_enum_or_text(Mode, mode), target_temperature=temperature)

    def update_target_state(self, state: TargetState) -> TargetState:
        """Store the fields that are set and return the full stored state."""
        if state.mode is not None:
            self._store(MODE_KEY, str(state.mode))
            metrics.set_thermofridge_mode(state.mode)

        if state.target_temperature is not None:
            temperature = int(state.target_temperature)
            self._store(TARGET_TEMPERATURE_KEY, str(temperature))
            metrics.set_thermofridge_target_temperature(temperature)

        return self.fetch_target_state()

    def fetch_current_state(self) -> CurrentState:
        operating_state = self._read(self.get_str, OPERATING_STATE_KEY)
        temperature = self._read(self.get_float, CURRENT_TEMPERATURE_KEY)
        return CurrentState(
            operating_state=_enum_or_text(OperatingState, operating_state),
            current_temperature=temperature,
        )

    def update_current_state(self, state: CurrentState) -> CurrentState:
        """Store the fields that are set and return the full stored state."""
        if state.operating_state is not None:
            self._store(OPERATING_STATE_KEY, str(state.operating_state))
            metrics.set_thermofridge_operating_state(state.operating_state)

        if state.current_temperature is not None:
            temperature = float(state.current_temperature)
            self._store(CURRENT_TEMPERATURE_KEY, f"{temperature:.2f}")
            metrics.set_thermofridge_current_temperature(temperature)

        return self.fetch_current_state()