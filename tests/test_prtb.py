import json

import pytest

from cattlewebhook.admission import (
    DecodeError,
    EscalationError,
    Operation,
    PolicyRule,
    Request,
)
from cattlewebhook.fielderrors import FieldError, FieldPath
from cattlewebhook.prtb import (
    PRTBValidator,
    ProjectRoleTemplateBinding,
    RoleTemplate,
    cluster_from_project,
    only_one_true,
    validate_update_fields,
)

CLUSTER_ID = "cluster-id"
PROJECT_ID = "project-id"
ADMIN_USER = "admin-userid"
TEST_USER = "test-userid"
ERROR_USER = "error-userid"
PRTB_USER = "prtb-userid"
CRTB_USER = "crtb-userid"
NEW_USER = "newUser-userid"
NEW_USER_PRINC = "local://newUser"
TEST_GROUP = "testGroup"
BAD_ROLE_TEMPLATE = "bad-roletemplate"

RULE_READ_SERVICES = PolicyRule(verbs=["GET", "WATCH"], api_groups=["v1"], resources=["services"])
RULE_ADMIN = PolicyRule(verbs=["*"], api_groups=["*"], resources=["*"])

ADMIN_RT = RoleTemplate(
    name="admin-role",
    display_name="Admin Role",
    rules=[RULE_ADMIN],
    builtin=True,
    administrative=True,
    context="project",
)
LOCKED_RT = RoleTemplate(
    name="locked-role", display_name="Locked Role", rules=[RULE_READ_SERVICES], locked=True, context="project"
)
CLUSTER_CONTEXT_RT = RoleTemplate(
    name="cluster-member", display_name="Cluster Member", rules=[RULE_READ_SERVICES], context="cluster"
)


class ExpectedError(Exception):
    pass


class RoleTemplates:
    def __init__(self, *templates, failing=()):
        self._templates = {rt.name: rt for rt in templates}
        self._failing = set(failing)

    def __getitem__(self, name):
        if name in self._failing:
            raise ExpectedError("expected test error")
        return self._templates[name]


def make_checker(global_admins, scoped_admins, calls=None):
    def check(request, rules, namespace):
        if calls is not None:
            calls.append(namespace)
        if request.username in global_admins:
            return
        if request.username in scoped_admins.get(namespace, set()):
            return
        raise EscalationError(f"user {request.username} may not grant these rules in {namespace}")

    return check


def make_validator(role_templates, calls=None):
    admins = {ADMIN_USER, ERROR_USER}
    return PRTBValidator(
        role_templates,
        lambda rt: rt.rules,
        make_checker(admins, {CLUSTER_ID: {CRTB_USER}}, calls),
        make_checker(admins, {PROJECT_ID: {PRTB_USER}}, calls),
    )


def base_prtb(name="PRTB-new", **fields):
    data = {
        "kind": "ProjectRoleTemplateBinding",
        "apiVersion": "management.cattle.io/v3",
        "metadata": {
            "name": name,
            "generateName": "PRTB-",
            "namespace": "p-namespace",
            "uid": "6534e4ef-f07b-4c61-b88d-95a92cce4852",
            "resourceVersion": "1",
            "generation": 1,
        },
        "userName": "user1",
        "roleTemplateName": "admin-role",
        "projectName": f"{CLUSTER_ID}:{PROJECT_ID}",
    }
    data.update(fields)
    return data


def make_request(old, new, username):
    return Request(
        operation=Operation.UPDATE if old is not None else Operation.CREATE,
        raw_object=json.dumps(new),
        raw_old_object=json.dumps(old) if old is not None else None,
        username=username,
        name=new["metadata"]["name"],
        namespace=new["metadata"]["namespace"],
        uid="1",
    )


@pytest.mark.parametrize(
    "username, bound_user, allowed",
    [
        (ADMIN_USER, TEST_USER, True),
        (CRTB_USER, TEST_USER, True),
        (PRTB_USER, TEST_USER, True),
        (TEST_USER, ERROR_USER, False),
        (TEST_USER, TEST_USER, False),
        (ERROR_USER, TEST_USER, True),
    ],
    ids=[
        "base test valid privileges",
        "CRTB resolver test",
        "PRTB resolver test",
        "privilege escalation other user",
        "privilege escalation self",
        "failed escalate verb check",
    ],
)
def test_privilege_escalation(username, bound_user, allowed):
    validator = make_validator(RoleTemplates(ADMIN_RT))
    new = base_prtb(userName=bound_user, roleTemplateName=ADMIN_RT.name)
    response = validator.admit(make_request(None, new, username))
    assert response.allowed is allowed


def test_escalation_denial_is_forbidden():
    validator = make_validator(RoleTemplates(ADMIN_RT))
    response = validator.admit(make_request(None, base_prtb(userName=TEST_USER), TEST_USER))
    assert response.allowed is False
    assert response.result.reason == "Forbidden"
    assert response.result.code == 403


def test_escalation_checks_cluster_then_project_namespace():
    calls = []
    validator = make_validator(RoleTemplates(ADMIN_RT), calls)
    validator.admit(make_request(None, base_prtb(), PRTB_USER))
    assert calls == [CLUSTER_ID, PROJECT_ID]


def test_escalation_stops_after_cluster_check_passes():
    calls = []
    validator = make_validator(RoleTemplates(ADMIN_RT), calls)
    response = validator.admit(make_request(None, base_prtb(), ADMIN_USER))
    assert response.allowed is True
    assert calls == [CLUSTER_ID]


UPDATE_CASES = [
    ("base test valid PRTB update", {"name": "oldName"}, {"name": "newName"}, True),
    ("update role template", {}, {"roleTemplateName": "read-role"}, False),
    ("update service account", {}, {"serviceAccount": "default"}, False),
    ("update previously set user", {"userName": "testuser1"}, {"userName": NEW_USER}, False),
    (
        "update removing a previously set service account",
        {"userName": "", "serviceAccount": "p1:default"},
        {"userName": ""},
        False,
    ),
    (
        "update previously set service account",
        {"userName": "", "serviceAccount": "p1:default"},
        {"userName": "", "serviceAccount": "p1:another"},
        False,
    ),
    (
        "set a previously unset service account with a user name already present",
        {},
        {"serviceAccount": "p1:another"},
        False,
    ),
    (
        "update previously unset user",
        {"userName": "", "userPrincipalName": NEW_USER_PRINC},
        {"userName": NEW_USER, "userPrincipalName": NEW_USER_PRINC},
        True,
    ),
    (
        "update previously unset user and set group",
        {"userName": "", "groupName": TEST_GROUP},
        {"userName": NEW_USER, "groupName": TEST_GROUP},
        False,
    ),
    (
        "update previously set user principal",
        {"userPrincipalName": "local://testuser1"},
        {"userPrincipalName": NEW_USER_PRINC},
        False,
    ),
    (
        "update previously set group",
        {"userName": "", "groupName": TEST_GROUP},
        {"userName": "", "groupName": ""},
        False,
    ),
    (
        "update previously unset group with no previously set user",
        {"userName": "", "groupName": "", "groupPrincipalName": "local://testgroup"},
        {"userName": "", "groupName": TEST_GROUP, "groupPrincipalName": "local://testgroup"},
        True,
    ),
    (
        "update previously unset group",
        {"userName": "testuser", "groupName": "", "groupPrincipalName": ""},
        {"userName": "testuser", "groupName": TEST_GROUP, "groupPrincipalName": ""},
        False,
    ),
    (
        "update previously set group principal",
        {"userName": "", "groupPrincipalName": "local://testuser1"},
        {"userName": "", "groupPrincipalName": NEW_USER_PRINC},
        False,
    ),
    (
        "update previously unset user principal",
        {"userName": "", "groupName": TEST_GROUP, "groupPrincipalName": ""},
        {"userName": "", "groupName": TEST_GROUP, "userPrincipalName": "local://newGroup"},
        True,
    ),
    ("update previously set project name", {}, {"projectName": "newName"}, False),
]


@pytest.mark.parametrize(
    "old_fields, new_fields, allowed",
    [case[1:] for case in UPDATE_CASES],
    ids=[case[0] for case in UPDATE_CASES],
)
def test_validation_on_update(old_fields, new_fields, allowed):
    validator = make_validator(RoleTemplates(ADMIN_RT))
    request = make_request(base_prtb(**old_fields), base_prtb(**new_fields), ADMIN_USER)
    response = validator.admit(request)
    assert response.allowed is allowed


CREATE_CASES = [
    ("base test valid PRTB creation", {}, True),
    ("missing role template", {"roleTemplateName": ""}, False),
    ("setting service account", {"userName": "", "serviceAccount": "default"}, True),
    ("setting a non project role template context", {"roleTemplateName": "cluster-member"}, False),
    ("neither user nor group nor service account subject is set", {"userName": ""}, False),
    ("both user and group set", {"userName": "newUser", "groupName": "newGroup"}, False),
    ("both user and service account set", {"userName": "newUser", "serviceAccount": "sa"}, False),
    (
        "both group and service account set",
        {"userName": "", "groupName": "newGroup", "serviceAccount": "sa"},
        False,
    ),
    ("locked role template", {"roleTemplateName": "locked-role"}, False),
    ("create with unset project name", {"projectName": ""}, False),
]


def create_validator():
    templates = RoleTemplates(ADMIN_RT, LOCKED_RT, CLUSTER_CONTEXT_RT, failing={BAD_ROLE_TEMPLATE, ""})
    return make_validator(templates)


@pytest.mark.parametrize(
    "fields, allowed",
    [case[1:] for case in CREATE_CASES],
    ids=[case[0] for case in CREATE_CASES],
)
def test_validation_on_create(fields, allowed):
    response = create_validator().admit(make_request(None, base_prtb(**fields), ADMIN_USER))
    assert response.allowed is allowed


def test_create_with_bad_role_template_name_raises():
    request = make_request(None, base_prtb(roleTemplateName=BAD_ROLE_TEMPLATE), ADMIN_USER)
    with pytest.raises(RuntimeError, match="failed to validate fields on create"):
        create_validator().admit(request)


def test_create_with_unknown_role_template_raises():
    request = make_request(None, base_prtb(roleTemplateName="nowhere"), ADMIN_USER)
    with pytest.raises(RuntimeError, match="failed to validate fields on create"):
        create_validator().admit(request)


def test_update_with_unknown_role_template_is_allowed():
    request = make_request(base_prtb(roleTemplateName="nowhere"), base_prtb(roleTemplateName="nowhere"), TEST_USER)
    response = create_validator().admit(request)
    assert response.allowed is True


def test_update_with_failing_role_template_lookup_raises():
    old = base_prtb(roleTemplateName=BAD_ROLE_TEMPLATE)
    request = make_request(old, base_prtb(roleTemplateName=BAD_ROLE_TEMPLATE), ADMIN_USER)
    with pytest.raises(RuntimeError, match="failed to get referenced roleTemplate 'bad-roletemplate'"):
        create_validator().admit(request)


def test_create_missing_role_template_message():
    response = create_validator().admit(make_request(None, base_prtb(roleTemplateName=""), ADMIN_USER))
    assert response.result.reason == "BadRequest"
    assert response.result.message == "projectroletemplatebinding.roleTemplateName: Required value"


def test_create_locked_role_template_message():
    response = create_validator().admit(make_request(None, base_prtb(roleTemplateName="locked-role"), ADMIN_USER))
    assert "referenced role 'Locked Role' is locked and cannot be assigned" in response.result.message


def test_create_cluster_context_message():
    response = create_validator().admit(
        make_request(None, base_prtb(roleTemplateName="cluster-member"), ADMIN_USER)
    )
    assert response.result.message.startswith("projectroletemplatebinding.roleTemplate.context: Unsupported value")
    assert '"project"' in response.result.message


def test_rules_error_is_wrapped():
    def failing_rules(rt):
        raise ExpectedError("expected test error")

    validator = PRTBValidator(
        RoleTemplates(ADMIN_RT),
        failing_rules,
        make_checker({ADMIN_USER}, {}),
        make_checker({ADMIN_USER}, {}),
    )
    with pytest.raises(RuntimeError, match="failed to get rules from referenced roleTemplate 'admin-role'"):
        validator.admit(make_request(None, base_prtb(), ADMIN_USER))


def test_missing_object_raises_decode_error():
    request = Request(operation=Operation.CREATE, username=ADMIN_USER)
    with pytest.raises(DecodeError, match="failed to decode PRTB object"):
        create_validator().admit(request)


def test_update_without_old_object_raises_decode_error():
    request = Request(operation=Operation.UPDATE, raw_object=json.dumps(base_prtb()), username=ADMIN_USER)
    with pytest.raises(DecodeError, match="failed to decode old and new PRTB objects"):
        create_validator().admit(request)


def test_operations():
    assert create_validator().operations() == [Operation.UPDATE, Operation.CREATE]


def test_from_dict_reads_fields():
    prtb = ProjectRoleTemplateBinding.from_dict(
        base_prtb(groupPrincipalName="local://testgroup", serviceAccount="p1:default")
    )
    assert prtb.name == "PRTB-new"
    assert prtb.namespace == "p-namespace"
    assert prtb.user_name == "user1"
    assert prtb.role_template_name == "admin-role"
    assert prtb.project_name == "cluster-id:project-id"
    assert prtb.group_principal_name == "local://testgroup"
    assert prtb.service_account == "p1:default"
    assert prtb.group_name == ""


@pytest.mark.parametrize(
    "project, expected",
    [
        ("cluster-id:project-id", ("cluster-id", "project-id")),
        ("gotham:city", ("gotham", "city")),
        ("noseparator", ("", "")),
        ("", ("", "")),
        ("a:b:c", ("a", "b")),
    ],
)
def test_cluster_from_project(project, expected):
    assert cluster_from_project(project) == expected


@pytest.mark.parametrize(
    "values, expected",
    [
        ((True, False, False), True),
        ((False, False, False), False),
        ((True, True, False), False),
        ((True, True, True), False),
        ((False, False, True), True),
        ((), False),
    ],
)
def test_only_one_true(values, expected):
    assert only_one_true(*values) is expected


def test_validate_update_fields_immutable_role_template():
    old = ProjectRoleTemplateBinding(role_template_name="admin-role", user_name="user1")
    new = ProjectRoleTemplateBinding(role_template_name="read-role", user_name="user1")
    with pytest.raises(FieldError) as info:
        validate_update_fields(old, new, FieldPath("projectroletemplatebinding"))
    assert str(info.value) == (
        'projectroletemplatebinding.roleTemplateName: Invalid value: "read-role": field is immutable'
    )


def test_validate_update_fields_service_account_forbidden():
    old = ProjectRoleTemplateBinding(service_account="p1:default")
    new = ProjectRoleTemplateBinding(service_account="p1:another")
    with pytest.raises(FieldError) as info:
        validate_update_fields(old, new, FieldPath("projectroletemplatebinding"))
    assert str(info.value) == "projectroletemplatebinding.serviceAccount: Forbidden: update is not allowed"


def test_validate_update_fields_accepts_unchanged():
    prtb = ProjectRoleTemplateBinding(user_name="user1", role_template_name="admin-role", project_name="c:p")
    assert validate_update_fields(prtb, prtb, FieldPath("projectroletemplatebinding")) is None