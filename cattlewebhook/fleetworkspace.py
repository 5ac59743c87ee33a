"""Mutation of FleetWorkspace creation requests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from cattlewebhook.admission import (
    AlreadyExistsError,
    EscalationError,
    GroupVersionResource,
    Operation,
    PolicyRule,
    Request,
    Response,
)

FLEET_ADMIN_ROLE = "fleetworkspace-admin"
MANAGEMENT_GROUP = "management.cattle.io"
RBAC_GROUP = "rbac.authorization.k8s.io"

_log = logging.getLogger(__name__)

_EscalationChecker = Callable[[Request, list[PolicyRule], str], None]


class _Creator(Protocol):
    def create(self, obj: dict[str, Any]) -> dict[str, Any]: ...


class _Store(_Creator, Protocol):
    def get(self, name: str) -> dict[str, Any]: ...


@dataclass
class FleetWorkspace:
    """A workspace grouping fleet resources; it owns a namespace of the same name."""

    name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FleetWorkspace:
        meta = data.get("metadata") or {}
        return cls(name=meta.get("name", ""))


def _user_subject(username: str) -> dict[str, str]:
    return {"kind": "User", "apiGroup": RBAC_GROUP, "name": username}


def _cluster_role_ref(name: str) -> dict[str, str]:
    return {"apiGroup": RBAC_GROUP, "kind": "ClusterRole", "name": name}


def _create_ignoring_existing(client: _Creator, obj: dict[str, Any]) -> None:
    try:
        client.create(obj)
    except AlreadyExistsError:
        pass


class FleetWorkspaceMutator:
    """Creates the namespace and RBAC objects that belong to a new FleetWorkspace.

    Each client takes and returns objects in their JSON form: create() raises
    AlreadyExistsError for an existing object, get() raises for a missing one.
    """

    gvr = GroupVersionResource("management.cattle.io", "v3", "fleetworkspaces")

    def __init__(
        self,
        namespaces: _Store,
        role_bindings: _Creator,
        cluster_role_bindings: _Creator,
        cluster_roles: _Store,
        escalation_checker: _EscalationChecker,
    ) -> None:
        self._namespaces = namespaces
        self._role_bindings = role_bindings
        self._cluster_role_bindings = cluster_role_bindings
        self._cluster_roles = cluster_roles
        self._check_escalation = escalation_checker

    def operations(self) -> list[Operation]:
        return [Operation.CREATE]

    def admit(self, request: Request) -> Response:
        """Create the workspace's namespace, role bindings and own cluster role, then admit."""
        if request.dry_run or request.operation is Operation.DELETE:
            return Response(allowed=True)

        workspace = FleetWorkspace.from_dict(request.new_object())

        namespace = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": workspace.name}}
        try:
            ns = self._namespaces.create(namespace)
        except AlreadyExistsError:
            admin_role = self._cluster_roles.get(FLEET_ADMIN_ROLE)
            rules = [PolicyRule.from_dict(rule) for rule in admin_role.get("rules") or []]
            # The outcome is informational only; admission continues either way.
            try:
                self._check_escalation(request, rules, workspace.name)
            except EscalationError as err:
                _log.warning("fleetworkspace %s: %s", workspace.name, err)
            ns = self._namespaces.get(workspace.name)

        _create_ignoring_existing(self._role_bindings, self._admin_role_binding(request, workspace))
        self._create_own_role_and_binding(request, workspace, ns)
        return Response(allowed=True)

    @staticmethod
    def _admin_role_binding(request: Request, workspace: FleetWorkspace) -> dict[str, Any]:
        return {
            "apiVersion": f"{RBAC_GROUP}/v1",
            "kind": "RoleBinding",
            "metadata": {
                "name": "fleetworkspace-admin-binding-" + workspace.name,
                "namespace": workspace.name,
            },
            "subjects": [_user_subject(request.username)],
            "roleRef": _cluster_role_ref(FLEET_ADMIN_ROLE),
        }

    def _create_own_role_and_binding(
        self, request: Request, workspace: FleetWorkspace, ns: Mapping[str, Any]
    ) -> None:
        ns_meta = ns.get("metadata") or {}
        role_name = "fleetworkspace-own-" + workspace.name
        cluster_role = {
            "apiVersion": f"{RBAC_GROUP}/v1",
            "kind": "ClusterRole",
            "metadata": {
                "name": role_name,
                "ownerReferences": [
                    {
                        "apiVersion": "v1",
                        "kind": "Namespace",
                        "name": ns_meta.get("name", ""),
                        "uid": ns_meta.get("uid", ""),
                        "controller": False,
                        "blockOwnerDeletion": False,
                    }
                ],
            },
            "rules": [
                {
                    "apiGroups": [MANAGEMENT_GROUP],
                    "verbs": ["*"],
                    "resources": ["fleetworkspaces"],
                    "resourceNames": [workspace.name],
                }
            ],
        }
        _create_ignoring_existing(self._cluster_roles, cluster_role)

        binding = {
            "apiVersion": f"{RBAC_GROUP}/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": "fleetworkspace-own-binding-" + workspace.name},
            "subjects": [_user_subject(request.username)],
            "roleRef": _cluster_role_ref(role_name),
        }
        _create_ignoring_existing(self._cluster_role_bindings, binding)