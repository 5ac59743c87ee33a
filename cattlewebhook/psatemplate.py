"""Validation of PodSecurityAdmissionConfigurationTemplate admission requests."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any

from cattlewebhook.admission import (
    DecodeError,
    GroupVersionResource,
    Operation,
    Request,
    Response,
    Status,
)
from cattlewebhook.fielderrors import (
    AggregateError,
    FieldError,
    FieldPath,
    aggregate,
    duplicate,
    invalid,
)
from cattlewebhook.names import (
    is_dns_subdomain,
    parse_level,
    parse_version,
    validate_namespace_name,
)

RANCHER_PRIVILEGED_TEMPLATE = "rancher-privileged"
RANCHER_RESTRICTED_TEMPLATE = "rancher-restricted"

_ClusterLookup = Callable[[str], Sequence[Any]]


@dataclass
class Defaults:
    """Default pod security levels and versions."""

    enforce: str = ""
    enforce_version: str = ""
    audit: str = ""
    audit_version: str = ""
    warn: str = ""
    warn_version: str = ""


@dataclass
class Exemptions:
    """Users, runtime classes and namespaces exempt from pod security checks."""

    usernames: list[str] = field(default_factory=list)
    runtime_classes: list[str] = field(default_factory=list)
    namespaces: list[str] = field(default_factory=list)


@dataclass
class PodSecurityAdmissionConfigurationTemplate:
    """A named pod security admission configuration."""

    name: str = ""
    description: str = ""
    defaults: Defaults = field(default_factory=Defaults)
    exemptions: Exemptions = field(default_factory=Exemptions)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PodSecurityAdmissionConfigurationTemplate:
        meta = data.get("metadata") or {}
        config = data.get("configuration") or {}
        defaults = config.get("defaults") or {}
        exemptions = config.get("exemptions") or {}
        return cls(
            name=meta.get("name", ""),
            description=data.get("description", ""),
            defaults=Defaults(
                enforce=defaults.get("enforce", ""),
                enforce_version=defaults.get("enforce-version", ""),
                audit=defaults.get("audit", ""),
                audit_version=defaults.get("audit-version", ""),
                warn=defaults.get("warn", ""),
                warn_version=defaults.get("warn-version", ""),
            ),
            exemptions=Exemptions(
                usernames=list(exemptions.get("usernames") or []),
                runtime_classes=list(exemptions.get("runtimeClasses") or []),
                namespaces=list(exemptions.get("namespaces") or []),
            ),
        )


def validate_level(path: FieldPath, value: str) -> list[FieldError]:
    """Check a pod security level; an empty value is accepted."""
    if not value:
        return []
    try:
        parse_level(value)
    except ValueError as exc:
        return [invalid(path, value, str(exc))]
    return []


def validate_version(path: FieldPath, value: str) -> list[FieldError]:
    """Check a pod security version; an empty value is accepted."""
    if not value:
        return []
    try:
        parse_version(value)
    except ValueError as exc:
        return [invalid(path, value, str(exc))]
    return []


def _validate_unique(
    values: Sequence[str], field_name: str, problems: Callable[[str], list[str]]
) -> list[FieldError]:
    path = FieldPath("exemptions", field_name)
    errors: list[FieldError] = []
    seen: set[str] = set()
    for i, value in enumerate(values):
        found = problems(value)
        if found:
            errors.append(invalid(path.index(i), value, ", ".join(found)))
        elif value in seen:
            errors.append(duplicate(path.index(i), value))
        else:
            seen.add(value)
    return errors


def validate_namespaces(template: PodSecurityAdmissionConfigurationTemplate) -> list[FieldError]:
    return _validate_unique(template.exemptions.namespaces, "namespaces", validate_namespace_name)


def validate_runtime_classes(template: PodSecurityAdmissionConfigurationTemplate) -> list[FieldError]:
    return _validate_unique(template.exemptions.runtime_classes, "runtimeClasses", is_dns_subdomain)


def validate_usernames(template: PodSecurityAdmissionConfigurationTemplate) -> list[FieldError]:
    return _validate_unique(
        template.exemptions.usernames,
        "usernames",
        lambda name: [] if name else ["username must not be empty"],
    )


def _raise_any(errors: list[FieldError]) -> None:
    err = aggregate(errors)
    if err is not None:
        raise err


def validate_configuration(template: PodSecurityAdmissionConfigurationTemplate) -> None:
    """Raise AggregateError for the first part of the configuration that is invalid."""
    d = template.defaults
    root = FieldPath("defaults")
    checks = (
        (validate_level, "enforce", d.enforce),
        (validate_version, "enforce-version", d.enforce_version),
        (validate_level, "warn", d.warn),
        (validate_version, "warn-version", d.warn_version),
        (validate_level, "audit", d.audit),
        (validate_version, "audit-version", d.audit_version),
    )
    for check, name, value in checks:
        _raise_any(check(root.child(name), value))
    _raise_any(validate_usernames(template))
    _raise_any(validate_runtime_classes(template))
    _raise_any(validate_namespaces(template))


def _denied(message: str, reason: str, code: int) -> Response:
    return Response(allowed=False, result=Status(status="Failure", message=message, reason=reason, code=code))


class TemplateValidator:
    """Checks templates on create and update, and guards templates in use from deletion.

    Each lookup takes a template name and returns the clusters of its kind
    that use the template as their default.
    """

    gvr = GroupVersionResource("management.cattle.io", "v3", "podsecurityadmissionconfigurationtemplates")

    def __init__(
        self,
        management_clusters_by_template: _ClusterLookup,
        provisioning_clusters_by_template: _ClusterLookup,
    ) -> None:
        self._management_clusters = management_clusters_by_template
        self._provisioning_clusters = provisioning_clusters_by_template

    def operations(self) -> list[Operation]:
        return [Operation.UPDATE, Operation.CREATE, Operation.DELETE]

    def admit(self, request: Request) -> Response:
        """Decide on the request; raises DecodeError for an unreadable object."""
        try:
            new_data = request.new_object()
            old_data = request.old_object()
        except DecodeError as exc:
            raise DecodeError(
                f"failed to parse PodSecurityAdmissionConfigurationTemplate object from request:{exc}"
            ) from exc
        new = PodSecurityAdmissionConfigurationTemplate.from_dict(new_data)
        old = PodSecurityAdmissionConfigurationTemplate.from_dict(old_data) if old_data is not None else new

        if request.operation in (Operation.CREATE, Operation.UPDATE):
            try:
                validate_configuration(new)
            except AggregateError as err:
                return _denied(str(err), "BadRequest", HTTPStatus.UNPROCESSABLE_ENTITY)
            return Response(allowed=True)

        if request.operation is Operation.DELETE:
            return self._admit_delete(old)

        return Response(allowed=True)

    def _admit_delete(self, template: PodSecurityAdmissionConfigurationTemplate) -> Response:
        if template.name in (RANCHER_PRIVILEGED_TEMPLATE, RANCHER_RESTRICTED_TEMPLATE):
            return _denied(
                f"Cannot delete built-in template '{template.name}'", "Forbidden", HTTPStatus.FORBIDDEN
            )
        try:
            count, cluster_type = self._clusters_using(template.name)
        except RuntimeError as err:
            return _denied(str(err), "InternalError", HTTPStatus.INTERNAL_SERVER_ERROR)
        if count > 0:
            if count == 1:
                message = f"Cannot delete template '{template.name}' as it is being used by a {cluster_type} cluster"
            else:
                message = (
                    f"Cannot delete template '{template.name}' as it is being used by "
                    f"{count} {cluster_type} clusters"
                )
            return _denied(message, "BadRequest", HTTPStatus.BAD_REQUEST)
        return Response(allowed=True)

    def _clusters_using(self, name: str) -> tuple[int, str]:
        for cluster_type, lookup in (
            ("management", self._management_clusters),
            ("provisioning", self._provisioning_clusters),
        ):
            try:
                clusters = lookup(name) or ()
            except Exception as exc:
                raise RuntimeError(f"error encountered within {cluster_type} cluster indexer: {exc}") from exc
            if clusters:
                return len(clusters), cluster_type
        return 0, ""