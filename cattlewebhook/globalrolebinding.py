"""Validation of GlobalRoleBinding admission requests."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from cattlewebhook.admission import (
    EscalationError,
    GroupVersionResource,
    Operation,
    PolicyRule,
    Request,
    Response,
    Status,
    set_escalation_response,
)
from cattlewebhook.globalrole import GlobalRole

_EscalationChecker = Callable[[Request, list[PolicyRule], str], None]


@dataclass
class GlobalRoleBinding:
    """Binds a user or group to a GlobalRole."""

    name: str = ""
    global_role_name: str = ""
    user_name: str = ""
    group_principal_name: str = ""
    deletion_timestamp: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GlobalRoleBinding:
        meta = data.get("metadata") or {}
        return cls(
            name=meta.get("name", ""),
            global_role_name=data.get("globalRoleName", ""),
            user_name=data.get("userName", ""),
            group_principal_name=data.get("groupPrincipalName", ""),
            deletion_timestamp=meta.get("deletionTimestamp"),
        )


class GlobalRoleBindingValidator:
    """Admits bindings only to existing GlobalRoles the user may grant.

    global_roles maps role names to GlobalRole objects; a missing role is
    signalled by LookupError (KeyError or NotFoundError).
    """

    gvr = GroupVersionResource("management.cattle.io", "v3", "globalrolebindings")

    def __init__(self, global_roles: Mapping[str, GlobalRole], escalation_checker: _EscalationChecker) -> None:
        self._global_roles = global_roles
        self._check_escalation = escalation_checker

    def operations(self) -> list[Operation]:
        return [Operation.CREATE, Operation.UPDATE, Operation.DELETE]

    def admit(self, request: Request) -> Response:
        """Decide on the request; raises DecodeError for an unreadable object."""
        binding = GlobalRoleBinding.from_dict(request.new_object())

        try:
            role = self._global_roles[binding.global_role_name]
        except LookupError:
            if request.operation is Operation.DELETE:
                return Response(allowed=True)
            if request.operation is Operation.UPDATE and binding.deletion_timestamp is not None:
                return Response(allowed=True)
            return Response(
                allowed=False,
                result=Status(
                    status="Failure",
                    message=f"referenced globalRole {binding.name} not found, only deletions allowed",
                    reason="Unauthorized",
                    code=HTTPStatus.UNAUTHORIZED,
                ),
            )

        try:
            self._check_escalation(request, role.rules, "")
        except EscalationError as err:
            return set_escalation_response(Response(), err)
        return set_escalation_response(Response(), None)