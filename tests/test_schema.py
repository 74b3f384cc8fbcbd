"""Tests for the document schemas and the structural validator."""

from reprovision.schema import get_schema, schema_names, unknown_keys, validate_schema
from reprovision.schema.documents import MANIFEST_SCHEMA, MODULE_SCHEMA


def test_valid_manifest_has_no_issues():
    data = {
        "version": 1,
        "packages": ["git", {"id": "jq", "ensure": "absent"}],
        "restore": [{"type": "append", "source": "a", "target": "~/.bashrc"}],
    }
    assert validate_schema(data, MANIFEST_SCHEMA) == []


def test_missing_required_and_wrong_type():
    issues = validate_schema({"packages": {"git": True}}, MANIFEST_SCHEMA)
    assert any("missing required property 'version'" in i for i in issues)
    assert any(".packages: expected type 'array'" in i for i in issues)


def test_booleans_are_not_integers():
    issues = validate_schema({"version": True}, MANIFEST_SCHEMA)
    assert any("expected type 'integer'" in i for i in issues)


def test_package_ref_one_of():
    assert validate_schema({"version": 1, "packages": [42]}, MANIFEST_SCHEMA)
    assert validate_schema({"version": 1, "packages": [{"ensure": "present"}]}, MANIFEST_SCHEMA)


def test_enum_and_pattern():
    issues = validate_schema({"id": "Bad Id", "sensitivity": "secret"}, MODULE_SCHEMA)
    assert any("does not match pattern" in i for i in issues)
    assert any("not in allowed values" in i for i in issues)


def test_unknown_keys_are_reported_not_rejected():
    data = {"version": 1, "owner": "me"}
    assert validate_schema(data, MANIFEST_SCHEMA) == []
    assert unknown_keys(data, MANIFEST_SCHEMA) == ["owner"]


def test_get_schema_returns_tagged_copy():
    assert "manifest" in schema_names()
    schema = get_schema("manifest")
    assert schema["$id"].endswith("/manifest/v1")
    schema["properties"].clear()
    assert get_schema("manifest")["properties"]
