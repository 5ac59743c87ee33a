"""Validation of GlobalRole admission requests."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cattlewebhook.admission import (
    EscalationError,
    GroupVersionResource,
    Operation,
    PolicyRule,
    Request,
    Response,
    response_allowed,
    response_bad_request,
    set_escalation_response,
)

_EscalationChecker = Callable[[Request, list[PolicyRule], str], None]


@dataclass
class GlobalRole:
    """A role granting permissions across all clusters."""

    name: str = ""
    rules: list[PolicyRule] = field(default_factory=list)
    display_name: str = ""
    description: str = ""
    deletion_timestamp: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GlobalRole:
        meta = data.get("metadata") or {}
        return cls(
            name=meta.get("name", ""),
            rules=[PolicyRule.from_dict(rule) for rule in data.get("rules") or []],
            display_name=data.get("displayName", ""),
            description=data.get("description", ""),
            deletion_timestamp=meta.get("deletionTimestamp"),
        )


class GlobalRoleValidator:
    """Admits GlobalRoles whose rules are well formed and do not escalate."""

    gvr = GroupVersionResource("management.cattle.io", "v3", "globalroles")

    def __init__(self, escalation_checker: _EscalationChecker) -> None:
        self._check_escalation = escalation_checker

    def operations(self) -> list[Operation]:
        return [Operation.UPDATE, Operation.CREATE]

    def admit(self, request: Request) -> Response:
        """Decide on the request; raises DecodeError for an unreadable object."""
        role = GlobalRole.from_dict(request.new_object())

        # Being deleted: admit, so that finalizers can be removed.
        if role.deletion_timestamp is not None:
            return response_allowed()

        if any(not rule.verbs for rule in role.rules):
            return response_bad_request("GlobalRole.Rules: PolicyRules must have at least one verb")

        try:
            self._check_escalation(request, role.rules, "")
        except EscalationError as err:
            return set_escalation_response(Response(), err)
        return set_escalation_response(Response(), None)