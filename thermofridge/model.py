"""Thermofridge state models and their validation rules."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ValidationError(ValueError):
    """A state could not be decoded or holds values out of range."""


class Mode(str, Enum):
    """Requested mode of the thermofridge."""

    OFF = "OFF"
    HEAT = "HEAT"
    COOL = "COOL"
    AUTO = "AUTO"

    def __str__(self) -> str:
        return self.value


class OperatingState(str, Enum):
    """What the thermofridge is doing right now."""

    IDLE = "IDLE"
    HEATING = "HEATING"
    COOLING = "COOLING"

    def __str__(self) -> str:
        return self.value


def _get(data: Any, key: str, kinds: tuple[type, ...], what: str) -> Any:
    if not isinstance(data, Mapping):
        raise ValidationError(f"expected a JSON object, got {type(data).__name__}")
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, kinds)):
        raise ValidationError(f"{key} must be {what}, got {value!r}")
    return value


def _as_enum(enum_type: type[Enum], value: Any) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        return value


def _check_choice(value: Any, enum_type: type[Enum], label: str) -> None:
    if value is not None and value not in {member.value for member in enum_type}:
        options = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"{label} must be one of: [{options}], got: {value}")


def _text(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass
class TargetState:
    """The state the thermofridge is asked to reach."""

    mode: Mode | str | None = None
    target_temperature: int | None = None

    def validate(self) -> None:
        """Raise ValidationError if any set field is invalid."""
        _check_choice(self.mode, Mode, "mode")
        temperature = self.target_temperature
        if temperature is not None and not 0 <= temperature <= 25:
            raise ValidationError(f"target temperature must be in range [0,25]. got: {temperature}")

    def to_dict(self) -> dict[str, Any]:
        return {"mode": _text(self.mode), "targetTemperature": self.target_temperature}

    @classmethod
    def from_dict(cls, data: Any) -> TargetState:
        mode = _get(data, "mode", (str,), "a string")
        temperature = _get(data, "targetTemperature", (int,), "an integer")
        return cls(_as_enum(Mode, mode), temperature)


@dataclass
class CurrentState:
    """The state the thermofridge reports about itself."""

    operating_state: OperatingState | str | None = None
    current_temperature: float | None = None

    def validate(self) -> None:
        """Raise ValidationError if any set field is invalid."""
        _check_choice(self.operating_state, OperatingState, "operating state")
        temperature = self.current_temperature
        if temperature is not None and not -55 <= temperature <= 125:
            raise ValidationError(
                f"current temperature must be in range [-55,125]. got: {temperature:f}"
            )

    def to_dict(self) -> dict[str, Any]:
        temperature = self.current_temperature
        return {
            "operatingState": _text(self.operating_state),
            "currentTemperature": None if temperature is None else float(temperature),
        }

    @classmethod
    def from_dict(cls, data: Any) -> CurrentState:
        state = _get(data, "operatingState", (str,), "a string")
        temperature = _get(data, "currentTemperature", (int, float), "a number")
        return cls(
            _as_enum(OperatingState, state),
            None if temperature is None else float(temperature),
        )


@dataclass(frozen=True)
class TemperatureReading:
    """A single temperature sample."""

    temperature: float