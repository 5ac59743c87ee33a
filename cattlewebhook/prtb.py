"""Validation of ProjectRoleTemplateBinding admission requests."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cattlewebhook.admission import (
    DecodeError,
    EscalationError,
    GroupVersionResource,
    Operation,
    PolicyRule,
    Request,
    Response,
    response_bad_request,
    set_escalation_response,
)
from cattlewebhook.fielderrors import FieldError, FieldPath, forbidden, invalid, not_supported, required

PROJECT_CONTEXT = "project"

_EscalationChecker = Callable[[Request, list[PolicyRule], str], None]
_RulesFromTemplate = Callable[["RoleTemplate"], list[PolicyRule]]


@dataclass
class RoleTemplate:
    """A template of rules that bindings grant within a cluster or project."""

    name: str = ""
    display_name: str = ""
    rules: list[PolicyRule] = field(default_factory=list)
    context: str = ""
    locked: bool = False
    builtin: bool = False
    administrative: bool = False


@dataclass
class ProjectRoleTemplateBinding:
    """Binds a user, group or service account to a RoleTemplate within a project."""

    name: str = ""
    namespace: str = ""
    user_name: str = ""
    user_principal_name: str = ""
    group_name: str = ""
    group_principal_name: str = ""
    service_account: str = ""
    role_template_name: str = ""
    project_name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProjectRoleTemplateBinding:
        meta = data.get("metadata") or {}
        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", ""),
            user_name=data.get("userName", ""),
            user_principal_name=data.get("userPrincipalName", ""),
            group_name=data.get("groupName", ""),
            group_principal_name=data.get("groupPrincipalName", ""),
            service_account=data.get("serviceAccount", ""),
            role_template_name=data.get("roleTemplateName", ""),
            project_name=data.get("projectName", ""),
        )


def cluster_from_project(project: str) -> tuple[str, str]:
    """Split "cluster:project" into its parts; ("", "") when there is no colon."""
    pieces = project.split(":")
    if len(pieces) < 2:
        return "", ""
    return pieces[0], pieces[1]


def only_one_true(*args: bool) -> bool:
    """Whether exactly one of the values is true."""
    return sum(1 for value in args if value) == 1


def validate_update_fields(
    old: ProjectRoleTemplateBinding, new: ProjectRoleTemplateBinding, path: FieldPath
) -> None:
    """Raise FieldError when an update changes a field that may not change."""
    reason = "field is immutable"
    if old.role_template_name != new.role_template_name:
        raise invalid(path.child("roleTemplateName"), new.role_template_name, reason)
    if old.project_name != new.project_name:
        raise invalid(path.child("projectName"), new.project_name, reason)
    if old.user_name != new.user_name and old.user_name:
        raise invalid(path.child("userName"), new.user_name, reason)
    if old.user_principal_name != new.user_principal_name and old.user_principal_name:
        raise invalid(path.child("userPrincipalName"), new.user_principal_name, reason)
    if old.group_name != new.group_name and old.group_name:
        raise invalid(path.child("groupName"), new.group_name, reason)
    if old.group_principal_name != new.group_principal_name and old.group_principal_name:
        raise invalid(path.child("groupPrincipalName"), new.group_principal_name, reason)
    if (new.group_name or old.group_principal_name) and (new.user_name or old.user_principal_name):
        raise forbidden(
            path,
            "binding must target either a user [userName]/[userPrincipalName] "
            "OR a group [groupName]/[groupPrincipalName]",
        )
    if old.service_account != new.service_account:
        raise forbidden(path.child("serviceAccount"), "update is not allowed")


class PRTBValidator:
    """Admits PRTBs with valid fields whose rules the requesting user may grant.

    role_templates maps names to RoleTemplates; a missing template is signalled
    by LookupError. rules_from_template expands a template into its rules. The
    escalation checkers raise EscalationError when the user may not grant the
    rules in the given namespace; the cluster checker is asked first.
    """

    gvr = GroupVersionResource("management.cattle.io", "v3", "projectroletemplatebindings")

    def __init__(
        self,
        role_templates: Mapping[str, RoleTemplate],
        rules_from_template: _RulesFromTemplate,
        cluster_escalation_checker: _EscalationChecker,
        project_escalation_checker: _EscalationChecker,
    ) -> None:
        self._role_templates = role_templates
        self._rules_from_template = rules_from_template
        self._check_cluster = cluster_escalation_checker
        self._check_project = project_escalation_checker

    def operations(self) -> list[Operation]:
        return [Operation.UPDATE, Operation.CREATE]

    def validate_create_fields(self, prtb: ProjectRoleTemplateBinding, path: FieldPath) -> None:
        """Raise FieldError when a new PRTB lacks or misuses a field.

        Errors from looking up the role template propagate unchanged.
        """
        has_user = bool(prtb.user_name or prtb.user_principal_name)
        has_group = bool(prtb.group_name or prtb.group_principal_name)
        has_service_account = bool(prtb.service_account)
        if not only_one_true(has_user, has_group, has_service_account):
            raise forbidden(
                path,
                "binding must target only a user [userName]/[userPrincipalName] "
                "OR a group [groupName]/[groupPrincipalName] OR a [serviceAccount]",
            )
        if not prtb.project_name:
            raise required(path.child("projectName"), "")
        if not prtb.role_template_name:
            raise required(path.child("roleTemplateName"), "")

        role_template = self._role_templates[prtb.role_template_name]
        if role_template.locked:
            raise forbidden(
                path.child("roleTemplate"),
                f"referenced role '{role_template.display_name}' is locked and cannot be assigned",
            )
        if role_template.context != PROJECT_CONTEXT:
            raise not_supported(path.child("roleTemplate", "context"), role_template.context, [PROJECT_CONTEXT])

    def admit(self, request: Request) -> Response:
        """Decide on the request; raises DecodeError or RuntimeError when it cannot."""
        path = FieldPath("projectroletemplatebinding")

        if request.operation is Operation.UPDATE:
            try:
                old_data = request.old_object()
                new_data = request.new_object()
            except DecodeError as exc:
                raise DecodeError(f"failed to decode old and new PRTB objects from request: {exc}") from exc
            if old_data is None:
                raise DecodeError("failed to decode old and new PRTB objects from request: request carries no old object")
            try:
                validate_update_fields(
                    ProjectRoleTemplateBinding.from_dict(old_data),
                    ProjectRoleTemplateBinding.from_dict(new_data),
                    path,
                )
            except FieldError as err:
                return response_bad_request(str(err))

        try:
            prtb = ProjectRoleTemplateBinding.from_dict(request.new_object())
        except DecodeError as exc:
            raise DecodeError(f"failed to decode PRTB object from request: {exc}") from exc

        if request.operation is Operation.CREATE:
            try:
                self.validate_create_fields(prtb, path)
            except FieldError as err:
                return response_bad_request(str(err))
            except Exception as exc:
                raise RuntimeError(f"failed to validate fields on create: {exc}") from exc

        cluster_ns, project_ns = cluster_from_project(prtb.project_name)

        try:
            role_template = self._role_templates[prtb.role_template_name]
        except LookupError:
            return Response(allowed=True)
        except Exception as exc:
            raise RuntimeError(
                f"failed to get referenced roleTemplate '{prtb.role_template_name}' for PRTB: {exc}"
            ) from exc

        try:
            rules = self._rules_from_template(role_template)
        except Exception as exc:
            raise RuntimeError(
                f"failed to get rules from referenced roleTemplate '{role_template.name}': {exc}"
            ) from exc

        try:
            self._check_cluster(request, rules, cluster_ns)
        except EscalationError:
            pass
        else:
            return Response(allowed=True)

        try:
            self._check_project(request, rules, project_ns)
        except EscalationError as err:
            return set_escalation_response(Response(), err)
        return set_escalation_response(Response(), None)