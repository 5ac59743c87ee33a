"""Name checks for Kubernetes objects and pod security levels and versions."""

from __future__ import annotations

import enum
import functools
import re
from dataclasses import dataclass

_DNS_LABEL = r"[a-z0-9]([-a-z0-9]*[a-z0-9])?"
_DNS_SUBDOMAIN = _DNS_LABEL + r"(\." + _DNS_LABEL + r")*"
_DNS_LABEL_MAX = 63
_DNS_SUBDOMAIN_MAX = 253

_LABEL_MESSAGE = (
    "a lowercase RFC 1123 label must consist of lower case alphanumeric characters or '-', "
    "and must start and end with an alphanumeric character"
)
_SUBDOMAIN_MESSAGE = (
    "a lowercase RFC 1123 subdomain must consist of lower case alphanumeric characters, '-' or '.', "
    "and must start and end with an alphanumeric character"
)


def is_dns_subdomain(value: str) -> list[str]:
    """Return the problems with value as an RFC 1123 subdomain; empty if valid."""
    problems = []
    if len(value) > _DNS_SUBDOMAIN_MAX:
        problems.append(f"must be no more than {_DNS_SUBDOMAIN_MAX} characters")
    if not re.fullmatch(_DNS_SUBDOMAIN, value):
        problems.append(_SUBDOMAIN_MESSAGE)
    return problems


def is_dns_label(value: str) -> list[str]:
    """Return the problems with value as an RFC 1123 label; empty if valid."""
    problems = []
    if len(value) > _DNS_LABEL_MAX:
        problems.append(f"must be no more than {_DNS_LABEL_MAX} characters")
    if not re.fullmatch(_DNS_LABEL, value):
        problems.append(_LABEL_MESSAGE)
    return problems


def validate_namespace_name(name: str) -> list[str]:
    """Return the problems with name as a namespace name; empty if valid."""
    return is_dns_label(name)


class Level(str, enum.Enum):
    """A pod security level."""

    PRIVILEGED = "privileged"
    BASELINE = "baseline"
    RESTRICTED = "restricted"


def parse_level(value: str) -> Level:
    """Parse a pod security level, raising ValueError when unknown."""
    try:
        return Level(value)
    except ValueError:
        names = ", ".join(level.value for level in Level)
        raise ValueError(f"must be one of {names}") from None


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    """A pod security policy version: v1.<minor> or latest."""

    major: int = 1
    minor: int = 0
    latest: bool = False

    def _key(self) -> tuple[bool, int, int]:
        return (self.latest, self.major, self.minor)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        return "latest" if self.latest else f"v{self.major}.{self.minor}"


def parse_version(value: str) -> Version:
    """Parse "latest" or "v1.x", raising ValueError otherwise."""
    if value == "latest":
        return Version(latest=True)
    match = re.fullmatch(r"v1\.(0|[1-9][0-9]*)", value)
    if not match:
        raise ValueError('must be "latest" or "v1.x"')
    return Version(1, int(match.group(1)))