"""Field paths and structured validation errors."""

from __future__ import annotations

import enum
import json
from collections.abc import Iterable, Iterator
from typing import Any


class FieldPath:
    """A dotted path to a field inside an object, with list indices."""

    def __init__(self, name: str, *more: str) -> None:
        self._parts: tuple[str, ...] = (name, *more)

    @classmethod
    def _from_parts(cls, parts: tuple[str, ...]) -> FieldPath:
        path = cls.__new__(cls)
        path._parts = parts
        return path

    def child(self, *args: str) -> FieldPath:
        """Return the path extended by the given field names."""
        return self._from_parts(self._parts + args)

    def index(self, i: int) -> FieldPath:
        """Return the path to the i-th element of this list field."""
        return self._from_parts(self._parts + (f"[{i}]",))

    def __str__(self) -> str:
        out = ""
        for part in self._parts:
            if not out or part.startswith("["):
                out += part
            else:
                out += "." + part
        return out

    def __repr__(self) -> str:
        return f"FieldPath({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FieldPath) and self._parts == other._parts

    def __hash__(self) -> int:
        return hash(self._parts)


class ErrorType(str, enum.Enum):
    """The kind of problem a field error reports."""

    NOT_FOUND = "Not found"
    REQUIRED = "Required value"
    DUPLICATE = "Duplicate value"
    INVALID = "Invalid value"
    NOT_SUPPORTED = "Unsupported value"
    FORBIDDEN = "Forbidden"
    TOO_LONG = "Too long"
    INTERNAL = "Internal error"


_VALUELESS = {ErrorType.REQUIRED, ErrorType.FORBIDDEN, ErrorType.TOO_LONG, ErrorType.INTERNAL}


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return repr(value)


class FieldError(ValueError):
    """A problem with one field of an object."""

    def __init__(self, type: ErrorType, path: FieldPath | str, bad_value: Any = None, detail: str = "") -> None:
        self.type = type
        self.field = str(path)
        self.bad_value = bad_value
        self.detail = detail
        super().__init__(str(self))

    @property
    def body(self) -> str:
        """The message without the field path."""
        if self.type in _VALUELESS:
            text = self.type.value
        else:
            text = f"{self.type.value}: {_format_value(self.bad_value)}"
        if self.detail:
            text += f": {self.detail}"
        return text

    def __str__(self) -> str:
        return f"{self.field}: {self.body}"


class AggregateError(ValueError):
    """Several field errors reported together."""

    def __init__(self, errors: Iterable[Exception]) -> None:
        self.errors: tuple[Exception, ...] = tuple(errors)
        super().__init__(str(self))

    def __iter__(self) -> Iterator[Exception]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def __str__(self) -> str:
        messages = list(dict.fromkeys(str(err) for err in self.errors))
        if len(messages) == 1:
            return messages[0]
        return "[" + ", ".join(messages) + "]"


def invalid(path: FieldPath, value: Any, detail: str) -> FieldError:
    return FieldError(ErrorType.INVALID, path, value, detail)


def duplicate(path: FieldPath, value: Any) -> FieldError:
    return FieldError(ErrorType.DUPLICATE, path, value)


def forbidden(path: FieldPath, detail: str) -> FieldError:
    return FieldError(ErrorType.FORBIDDEN, path, "", detail)


def required(path: FieldPath, detail: str) -> FieldError:
    return FieldError(ErrorType.REQUIRED, path, "", detail)


def not_supported(path: FieldPath, value: Any, valid_values: Iterable[str]) -> FieldError:
    quoted = [json.dumps(v) for v in valid_values]
    detail = "supported values: " + ", ".join(quoted) if quoted else ""
    return FieldError(ErrorType.NOT_SUPPORTED, path, value, detail)


def aggregate(errors: Iterable[Exception] | None) -> AggregateError | None:
    """Combine errors into one, or return None when there are none."""
    collected = [err for err in errors or () if err is not None]
    return AggregateError(collected) if collected else None