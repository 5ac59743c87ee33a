# cattlewebhook

Admission logic for cluster management resources. Each validator takes an
admission `Request` and returns a `Response` saying whether the change is
allowed and, if it is not, why. Lookups, stores and privilege-escalation
checks are plain callables or mappings that you supply, so the validators run
against whatever store you have.

The package has no dependencies outside the standard library.

## Installing

```
pip install cattlewebhook
pip install "cattlewebhook[test]"   # with pytest
```

## Requests and responses

`cattlewebhook.admission` holds the shared types:

- `Request(operation, raw_object=None, raw_old_object=None, username="",
  groups=[], name="", namespace="", uid="", dry_run=False)`. The raw objects
  may be JSON as `bytes` or `str`, or an already decoded mapping.
  `request.new_object()` decodes the object (a `DELETE` request without one
  falls back to the old object); `request.old_object()` decodes the old
  object or returns `None`. Both raise `DecodeError` when there is nothing to
  decode or the JSON is not an object.
- `Operation`: `CREATE`, `UPDATE`, `DELETE`, `CONNECT`.
- `Response(allowed, result)` and `Status(status, message, reason, code)`.
- `PolicyRule` with `PolicyRule.from_dict(...)` reading `verbs`,
  `apiGroups`, `resources`, `resourceNames` and `nonResourceURLs`.
- Errors: `DecodeError`, `NotFoundError`, `AlreadyExistsError`,
  `EscalationError`.
- Helpers: `response_allowed()`, `response_bad_request(message)` (reason
  `BadRequest`, code 400) and `set_escalation_response(response, error)`,
  which allows the response when `error` is `None` and otherwise denies it
  with reason `Forbidden`, code 403.

An escalation checker is any callable `check(request, rules, namespace)` that
raises `EscalationError` when the requesting user may not grant `rules` in
`namespace` (`""` means cluster-wide) and returns otherwise.

## Validators

| Module | Class | Constructor | Handles |
| --- | --- | --- | --- |
| `cattlewebhook.globalrole` | `GlobalRoleValidator` | `(escalation_checker)` | objects being deleted are admitted; every rule needs a verb; no escalation |
| `cattlewebhook.globalrolebinding` | `GlobalRoleBindingValidator` | `(global_roles, escalation_checker)` | the referenced `GlobalRole` must exist, except on delete or on update of a binding being deleted; no escalation |
| `cattlewebhook.nodedriver` | `NodeDriverValidator` | `(node_lister, machine_lister)` | a driver still used by RKE1 nodes or RKE2 machines cannot be deactivated or deleted |
| `cattlewebhook.psatemplate` | `TemplateValidator` | `(management_clusters_by_template, provisioning_clusters_by_template)` | pod security levels, versions and exemptions on create and update; built-in and in-use templates cannot be deleted |
| `cattlewebhook.prtb` | `PRTBValidator` | `(role_templates, rules_from_template, cluster_escalation_checker, project_escalation_checker)` | immutable fields on update; exactly one subject, a project and a role template on create; locked or non-project role templates refused; no escalation at cluster or project level |

Each has a `gvr` attribute, an `operations()` method listing the operations
it handles, and `admit(request)`.

What the arguments are:

- `global_roles` and `role_templates` are mappings from names to
  `GlobalRole` or `RoleTemplate` objects; a missing name must raise
  `LookupError` (`KeyError` or `NotFoundError`).
- `node_lister()` returns the RKE1 `Node` objects; `Node.template_driver` is
  the driver of the node's template, or `None`. `machine_lister(kind)`
  returns the machines of kind `<displayName>machine`.
- The two template lookups take a template name and return the clusters
  whose default template it is.
- `rules_from_template(role_template)` returns the template's rules.

`cattlewebhook.psatemplate` also exposes the checks it is built from:
`validate_level`, `validate_version`, `validate_usernames`,
`validate_runtime_classes`, `validate_namespaces` (each returning a list of
`FieldError`) and `validate_configuration`, which raises `AggregateError` for
the first invalid part. `cattlewebhook.prtb` exposes
`validate_update_fields`, `cluster_from_project` and `only_one_true`.

`admit` raises `DecodeError` when the request's object cannot be decoded;
`NodeDriverValidator` and `PRTBValidator` raise `RuntimeError` when a lookup
they depend on fails.

## Fleet workspaces

`cattlewebhook.fleetworkspace.FleetWorkspaceMutator(namespaces, role_bindings,
cluster_role_bindings, cluster_roles, escalation_checker)` handles `CREATE`
of a fleet workspace. Outside a dry run it creates:

1. a namespace with the workspace's name (if it exists already, the
   `fleetworkspace-admin` cluster role's rules go through the escalation
   checker, whose refusal is only logged, and the namespace is fetched);
2. a role binding `fleetworkspace-admin-binding-<name>` giving the requesting
   user `fleetworkspace-admin` in that namespace;
3. a cluster role `fleetworkspace-own-<name>`, owned by the namespace, with
   every verb on that one workspace, and a cluster role binding
   `fleetworkspace-own-binding-<name>` for the requesting user.

Each client has `create(obj)`, taking and returning the object as a JSON
mapping and raising `AlreadyExistsError` for an existing one; `namespaces`
and `cluster_roles` also need `get(name)`. Existing role bindings, cluster
roles and cluster role bindings are left as they are. The response always
allows the request.

## Field errors and names

- `cattlewebhook.fielderrors`: `FieldPath` (with `child(...)` and
  `index(i)`), `ErrorType`, `FieldError`, `AggregateError` and the
  constructors `invalid`, `duplicate`, `forbidden`, `required`,
  `not_supported` and `aggregate`.
- `cattlewebhook.names`: `is_dns_subdomain`, `is_dns_label` and
  `validate_namespace_name` return lists of problems (empty when valid);
  `parse_level` returns a `Level` and `parse_version` a `Version`, both
  raising `ValueError` for bad input.

## Example

```python
from cattlewebhook.admission import EscalationError, Operation, Request
from cattlewebhook.globalrole import GlobalRoleValidator

ADMINS = {"admin"}

def check_escalation(request, rules, namespace):
    if request.username not in ADMINS:
        raise EscalationError(f"user {request.username} may not grant these rules")

validator = GlobalRoleValidator(check_escalation)

request = Request(
    operation=Operation.CREATE,
    username="admin",
    raw_object={"rules": [{"verbs": ["get"], "apiGroups": [""], "resources": ["pods"]}]},
)
print(validator.admit(request).allowed)  # True

request = Request(operation=Operation.CREATE, username="admin", raw_object={"rules": [{"verbs": []}]})
response = validator.admit(request)
print(response.allowed, response.result.message)
# False GlobalRole.Rules: PolicyRules must have at least one verb
```

## What this package does not do

It contains the admission decisions only. There is no HTTP server to receive
admission reviews, no registration of webhook configurations, no client for
a cluster's API and no RBAC rule resolver: the stores, listers and
escalation checkers all come from the caller.

## Running the tests

```
pytest
```