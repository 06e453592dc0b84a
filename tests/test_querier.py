import json

import pytest

from mongoproxy.authz.querier import AuthorizeResult, Authz, AuthzSchema
from mongoproxy.authz.resource import Resource, resource_from_uri
from mongoproxy.authz.types import AuthorizationMethod, Effect

CREATE = AuthorizationMethod.CREATE
READ = AuthorizationMethod.READ
UPDATE = AuthorizationMethod.UPDATE
DELETE = AuthorizationMethod.DELETE
ALLOW = Effect.ALLOW
DENY = Effect.DENY


def _rule(effect, actions, *resources, policy=None):
    entry = {
        "Effect": effect,
        "Action": list(actions),
        "Resource": list(resources),
        "Condition": {},
    }
    if policy is not None:
        entry["Policy"] = policy
    return entry


def _res(db, collection="", field=""):
    return {"Database": db, "Collection": collection, "Field": field}


ROLES = {
    "role1": ["policy2"],
    "glob1": ["policy3"],
    "glob2": ["policy4"],
    "glob3": ["policy5"],
    "log1": ["policy6", "policy7"],
    "global": ["policy8"],
    "multiple_roles1": ["policy9"],
    "multiple_roles2": ["policy10"],
}

POLICIES = {
    "policy2": [
        _rule("Allow", ["Read"], _res("db1", "coll2", "field2")),
        _rule("Deny", ["Delete"], _res("db1", "coll2", "field3")),
    ],
    "policy3": [
        _rule("Allow", ["Read"], _res("db", "coll", "*")),
        _rule("Deny", ["Delete"], _res("db", "coll", "*")),
        _rule("Allow", ["Update"], _res("db", "coll", "allowed1")),
        _rule("Deny", ["Read"], _res("db", "coll", "denied")),
    ],
    "policy4": [
        _rule("Deny", ["Update"], _res("db", "*", "*")),
        _rule("Allow", ["Read"], _res("db", "*", "*")),
        _rule("Allow", ["Create"], _res("db", "coll", "field")),
    ],
    "policy5": [
        _rule("Deny", ["Update"], _res("*", "*", "*")),
        _rule("Allow", ["Read"], _res("*", "*", "*")),
        _rule("Allow", ["Create"], _res("db", "coll", "field")),
    ],
    "policy6": [
        _rule(
            "Deny",
            ["Create", "Read", "Update", "Delete"],
            _res("db", "coll", "field"),
            policy="LogOnly",
        ),
        _rule("Deny", ["Update"], _res("db", "coll", "field")),
    ],
    "policy7": [_rule("Deny", ["Delete"], _res("db", "coll", "field"))],
    "policy8": [_rule("Allow", ["Delete"], {"Global": "*"})],
    "policy9": [_rule("Allow", ["Create", "Delete"], _res("db", "coll", "field"))],
    "policy10": [_rule("Deny", ["Delete"], _res("db", "coll", "field"))],
}


def _write_schema(directory, roles, policies):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "roles.json").write_text(json.dumps(roles))
    (directory / "policies.json").write_text(json.dumps(policies))
    return directory


@pytest.fixture(scope="module")
def authz(tmp_path_factory):
    schema_dir = _write_schema(tmp_path_factory.mktemp("schema"), ROLES, POLICIES)
    loaded = Authz()
    loaded.load_config([schema_dir])
    return loaded


NONE = ("", None, None, False)

CASES = [
    # simple
    (["role1"], READ, "db1/coll2/field2", ("role1", "policy2", ALLOW, False)),
    (["role1"], DELETE, "db1/coll2/field3", ("role1", "policy2", DENY, False)),
    # default
    (["role1"], READ, "db/coll/field", NONE),
    (["role1"], READ, "db/coll", NONE),
    (["role1"], READ, "db", NONE),
    # not a role
    (["not a role"], READ, "db/coll/field", NONE),
    # glob field block
    (["glob1"], UPDATE, "db/coll/allowed1", ("glob1", "policy3", ALLOW, False)),
    (["glob1"], DELETE, "db/coll/allowed1", ("glob1", "policy3", DENY, False)),
    # glob field search
    (["glob1"], READ, "db/coll/*", ("glob1", "policy3", ALLOW, False)),
    (["glob1"], DELETE, "db/coll/*", ("glob1", "policy3", DENY, False)),
    (["glob1"], UPDATE, "db/coll/*", NONE),
    # glob field allow
    (["glob1"], READ, "db/coll/allowed", ("glob1", "policy3", ALLOW, False)),
    (["glob1"], READ, "db/coll/denied", ("glob1", "policy3", DENY, False)),
    # glob collection block
    (["glob2"], UPDATE, "db/random/random", ("glob2", "policy4", DENY, False)),
    (["glob2"], READ, "db/random/random", ("glob2", "policy4", ALLOW, False)),
    (["glob2"], UPDATE, "db/coll/field", ("glob2", "policy4", DENY, False)),
    (["glob2"], CREATE, "db/coll/field", ("glob2", "policy4", ALLOW, False)),
    # glob collection search
    (["glob2"], UPDATE, "db/*", ("glob2", "policy4", DENY, False)),
    (["glob2"], READ, "db/*", ("glob2", "policy4", ALLOW, False)),
    (["glob2"], CREATE, "db/*", NONE),
    # glob db block
    (["glob3"], UPDATE, "random/random/random", ("glob3", "policy5", DENY, False)),
    (["glob3"], READ, "random/random/random", ("glob3", "policy5", ALLOW, False)),
    (["glob3"], UPDATE, "random/random", ("glob3", "policy5", DENY, False)),
    (["glob3"], READ, "random/random", ("glob3", "policy5", ALLOW, False)),
    (["glob3"], UPDATE, "db/coll/field", ("glob3", "policy5", DENY, False)),
    (["glob3"], CREATE, "db/coll/field", ("glob3", "policy5", ALLOW, False)),
    # glob db search
    (["glob3"], UPDATE, "*", ("glob3", "policy5", DENY, False)),
    (["glob3"], READ, "*", ("glob3", "policy5", ALLOW, False)),
    (["glob3"], CREATE, "*", NONE),
    # log only
    (["log1"], CREATE, "db/coll/field", ("", None, None, True)),
    (["log1"], READ, "db/coll/field", ("", None, None, True)),
    (["log1"], UPDATE, "db/coll/field", ("log1", "policy6", DENY, True)),
    (["log1"], DELETE, "db/coll/field", ("log1", "policy7", DENY, True)),
    # global
    (["global"], CREATE, "-", NONE),
    (["global"], DELETE, "-", ("global", "policy8", ALLOW, False)),
    # multiple roles
    (
        ["multiple_roles1", "multiple_roles2"],
        CREATE,
        "db/coll/field",
        ("multiple_roles1", "policy9", ALLOW, False),
    ),
    (
        ["multiple_roles1", "multiple_roles2"],
        DELETE,
        "db/coll/field",
        ("multiple_roles2", "policy10", DENY, False),
    ),
]


def _summary(result):
    if result.rule is None:
        return ("", None, None, bool(result.log_only_rules))
    return (
        result.identity_name,
        result.rule.policy_name,
        result.rule.effect,
        bool(result.log_only_rules),
    )


@pytest.mark.parametrize("roles, method, uri, expected", CASES)
def test_authorize(authz, roles, method, uri, expected):
    resource = resource_from_uri(uri)
    result = authz.querier().authorize(roles, method, resource)
    assert _summary(result) == expected
    assert result.method is method
    assert result.resource == resource


def test_authorize_without_roles_returns_empty_result():
    schema = AuthzSchema()
    resource = Resource(db="db")
    assert schema.authorize([], READ, resource) == AuthorizeResult(READ, resource)


def test_querier_before_load_is_none():
    assert Authz().querier() is None


def test_failed_load_keeps_previous_schema(tmp_path, authz):
    loaded = Authz()
    schema_dir = _write_schema(tmp_path / "good", ROLES, POLICIES)
    loaded.load_config([schema_dir])
    before = loaded.querier()
    with pytest.raises(FileNotFoundError):
        loaded.load_config([tmp_path / "missing"])
    assert loaded.querier() is before
    assert loaded.paths == [schema_dir]


def test_combine_roles_appends_missing():
    schema = AuthzSchema(roles={"r": ["a", "b"]})
    schema.combine_roles({"r": ["b", "c"], "s": ["d"]})
    assert schema.roles == {"r": ["a", "b", "c"], "s": ["d"]}


def test_load_config_merges_paths(tmp_path):
    first = _write_schema(
        tmp_path / "one",
        {"r": ["p"]},
        {"p": [_rule("Allow", ["Read"], _res("db", "coll"))]},
    )
    second = _write_schema(
        tmp_path / "two",
        {"r": ["q"]},
        {
            "p": [_rule("Deny", ["Delete"], _res("db", "coll"))],
            "q": [_rule("Allow", ["Create"], _res("db"))],
        },
    )
    loaded = Authz()
    loaded.load_config([first, second])
    schema = loaded.querier()
    assert schema.roles == {"r": ["p", "q"]}
    coll = Resource(db="db", collection="coll")
    assert schema.authorize(["r"], READ, coll).rule.effect is ALLOW
    assert schema.authorize(["r"], DELETE, coll).rule.effect is DENY
    create = schema.authorize(["r"], CREATE, Resource(db="db"))
    assert (create.identity_name, create.rule.policy_name) == ("r", "q")