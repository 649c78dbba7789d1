"""Tagged validation outcome shared by every entity validator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class Err:
    errors: tuple[str, ...]
    ok: Literal[False] = False


Validated = Union[Ok[T], Err]


def from_diagnostics(value: T, diagnostics: list[str]) -> Validated[T]:
    if diagnostics:
        return Err(errors=tuple(diagnostics))
    return Ok(value=value)


def is_non_empty_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_str_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)
