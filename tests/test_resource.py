import pytest

from mongoproxy.authz.resource import (
    Resource,
    append_if_missing,
    expand_resource,
    get_resource,
    resource_from_uri,
    split_uri,
)


@pytest.mark.parametrize(
    "given,expected",
    [
        (Resource(is_global=True), [Resource(is_global=True)]),
        (
            Resource(False, "db", "col", "field"),
            [
                Resource(False, "db", "col", "field"),
                Resource(False, "db", "col", "*"),
                Resource(False, "db", "*", "field"),
                Resource(False, "db", "*", "*"),
                Resource(False, "*", "col", "field"),
                Resource(False, "*", "col", "*"),
                Resource(False, "*", "*", "field"),
                Resource(False, "*", "*", "*"),
            ],
        ),
        (
            Resource(False, "db", "col", ""),
            [
                Resource(False, "db", "col", ""),
                Resource(False, "db", "*", ""),
                Resource(False, "*", "*", ""),
            ],
        ),
        (
            Resource(False, "db", "", ""),
            [Resource(False, "db", "", ""), Resource(False, "*", "", "")],
        ),
        (Resource(False, "*", "", ""), [Resource(False, "*", "", "")]),
    ],
)
def test_expand_resource(given, expected):
    assert expand_resource(given) == expected


def test_resource_str():
    assert str(Resource(is_global=True, db="x")) == "-"
    assert str(Resource(db="db", collection="col", field="field")) == "db/col/field"
    assert str(Resource()) == "*/*/*"
    assert str(Resource(db="db")) == "db/*/*"


@pytest.mark.parametrize(
    "uri,expected",
    [
        ("db/coll/fld", (["db"], ["coll"], ["fld"])),
        ("db/coll/*", (["db"], ["coll"], ["*"])),
        ("db/coll/fld1,fld2", (["db"], ["coll"], ["fld1", "fld2"])),
        ("db/*/fld1,fld2", (["db"], ["*"], ["fld1", "fld2"])),
        ("db/coll", (["db"], ["coll"], ["*"])),
        ("db", (["db"], ["*"], ["*"])),
    ],
)
def test_split_uri(uri, expected):
    assert split_uri(uri) == expected


def test_split_uri_too_many_parts():
    with pytest.raises(ValueError, match="too many parts"):
        split_uri("a/b/c/d")


def test_resource_from_uri():
    assert resource_from_uri("db1/coll2/field2") == Resource(False, "db1", "coll2", "field2")
    assert resource_from_uri("db/*") == Resource(False, "db", "*", "*")
    assert resource_from_uri("*") == Resource(False, "*", "*", "*")
    assert resource_from_uri("-").is_global


def test_resource_from_uri_str_round_trip():
    for uri in ("db/coll/field", "db/*/*", "*/*/*"):
        assert str(resource_from_uri(uri)) == uri


def test_get_resource_global():
    assert get_resource({"Global": "*", "Database": "db"}) == Resource(is_global=True)


def test_get_resource_levels():
    assert get_resource({"Database": "db"}) == Resource(db="db")
    assert get_resource({"Database": "db", "Collection": "c"}) == Resource(db="db", collection="c")
    assert get_resource({"Database": "db", "Field": "f"}) == Resource(
        db="db", collection="*", field="f"
    )


def test_get_resource_requires_database():
    with pytest.raises(ValueError, match="must specify a db"):
        get_resource({"Collection": "c"})


def test_resources_are_hashable_keys():
    table = {Resource(db="db"): 1}
    assert table[get_resource({"Database": "db"})] == 1


def test_append_if_missing():
    assert append_if_missing(["a", "b"], ["b", "c"]) == ["a", "b", "c"]
    assert append_if_missing([], ["x"]) == ["x"]
    original = ["a"]
    append_if_missing(original, ["z"])
    assert original == ["a"]