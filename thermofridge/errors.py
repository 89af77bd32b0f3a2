"""Error types shared by the storage and messaging clients."""

from __future__ import annotations

from collections.abc import Iterable


class MultipleError(Exception):
    """Several errors reported together as one."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        return " | ".join(str(error) for error in self.errors)


class NotFoundError(LookupError):
    """A requested item does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if len(self.args) == 1 else super().__str__()