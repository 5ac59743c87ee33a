"""Admission requests, responses and the errors shared by the validators."""

from __future__ import annotations

import enum
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Union

RawObject = Union[bytes, str, Mapping, None]


class Operation(str, enum.Enum):
    """The operation an admission request was sent for."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


@dataclass(frozen=True)
class GroupVersionResource:
    """Identifies the resource a webhook handles."""

    group: str
    version: str
    resource: str


class DecodeError(ValueError):
    """The object carried by a request could not be decoded."""


class NotFoundError(LookupError):
    """A referenced object does not exist."""


class AlreadyExistsError(Exception):
    """An object to be created exists already."""


class EscalationError(PermissionError):
    """A user tried to grant permissions they do not hold themselves."""


@dataclass
class Status:
    """The result details attached to a denied response."""

    status: str = "Failure"
    message: str = ""
    reason: str = ""
    code: int = 0


@dataclass
class Response:
    """The answer to an admission request."""

    allowed: bool = False
    result: Status | None = None


def _is_empty(raw: RawObject) -> bool:
    return raw is None or (isinstance(raw, (bytes, str)) and not raw)


def _decode(raw: RawObject, which: str) -> dict[str, Any]:
    if _is_empty(raw):
        raise DecodeError(f"request carries no {which}")
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise DecodeError(f"cannot decode {which}: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError(f"{which} is not a JSON object")
    return data


@dataclass
class Request:
    """An admission request as sent by the API server."""

    operation: Operation
    raw_object: RawObject = None
    raw_old_object: RawObject = None
    username: str = ""
    groups: list[str] = field(default_factory=list)
    name: str = ""
    namespace: str = ""
    uid: str = ""
    dry_run: bool = False

    def new_object(self) -> dict[str, Any]:
        """Decode the object; delete requests fall back to the old object."""
        if self.operation is Operation.DELETE and _is_empty(self.raw_object):
            return _decode(self.raw_old_object, "old object")
        return _decode(self.raw_object, "object")

    def old_object(self) -> dict[str, Any] | None:
        """Decode the old object, or return None when the request has none."""
        if _is_empty(self.raw_old_object):
            return None
        return _decode(self.raw_old_object, "old object")


@dataclass
class PolicyRule:
    """One RBAC policy rule."""

    verbs: list[str] = field(default_factory=list)
    api_groups: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    resource_names: list[str] = field(default_factory=list)
    non_resource_urls: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PolicyRule:
        return cls(
            verbs=list(data.get("verbs") or []),
            api_groups=list(data.get("apiGroups") or []),
            resources=list(data.get("resources") or []),
            resource_names=list(data.get("resourceNames") or []),
            non_resource_urls=list(data.get("nonResourceURLs") or []),
        )


def response_allowed() -> Response:
    """A response that admits the request."""
    return Response(allowed=True)


def response_bad_request(message: str) -> Response:
    """A response that denies the request as malformed."""
    return Response(
        allowed=False,
        result=Status(
            status="Failure",
            message=message,
            reason="BadRequest",
            code=HTTPStatus.BAD_REQUEST,
        ),
    )


def set_escalation_response(response: Response, error: Exception | None) -> Response:
    """Allow the response when error is None, otherwise deny it as forbidden."""
    if error is None:
        response.allowed = True
        response.result = None
    else:
        response.allowed = False
        response.result = Status(
            status="Failure",
            message=str(error),
            reason="Forbidden",
            code=HTTPStatus.FORBIDDEN,
        )
    return response