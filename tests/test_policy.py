from pathlib import Path

import pytest

from app.features.permissions.exceptions import PolicyError
from app.features.permissions.policy import load_policy, parse_policy
from app.features.permissions.types import AccessLevel


REPO_POLICY = Path(__file__).parents[1] / "permissions.yml"


def test_parse_policy_normalizes_entries():
    policy = parse_policy({
        "permissions": [
            {"operation": "read lesson", "public": True, "fields": ["Title", " body "]},
            {"operation": "Delete Lesson", "roles": ["owner", "ADMIN"]},
        ]
    })

    public, scoped = policy.permissions
    assert public.operation == "Read Lesson"
    assert public.fields == ["title", "body"]
    assert scoped.roles == ["OWNER", "ADMIN"]
    assert scoped.fields == []
    assert scoped.to_operation().access_level is AccessLevel.DELETE


def test_empty_document_is_an_empty_policy():
    assert parse_policy(None).permissions == []


@pytest.mark.parametrize("entry", [
    {"operation": "Read Lesson"},
    {"operation": "Read Lesson", "public": True, "roles": ["ADMIN"]},
    {"operation": "Read Lesson", "roles": ["GUEST"]},
    {"operation": "Browse Lesson", "public": True},
    {"operation": "Read Ghost", "public": True},
    {"operation": "Read Lesson", "public": True, "audience": "EVERYONE"},
])
def test_invalid_entries_are_rejected(entry):
    with pytest.raises(PolicyError):
        parse_policy({"permissions": [entry]})


def test_load_policy_from_file(tmp_path):
    path = tmp_path / "permissions.yml"
    path.write_text(
        "permissions:\n"
        "  - operation: Read Course\n"
        "    public: true\n"
        "    fields: [status]\n"
    )

    policy = load_policy(path)

    assert len(policy.permissions) == 1
    assert policy.permissions[0].public


def test_missing_policy_file(tmp_path):
    with pytest.raises(PolicyError):
        load_policy(tmp_path / "missing.yml")
    assert load_policy(tmp_path / "missing.yml", required=False) is None


def test_malformed_yaml_is_a_policy_error(tmp_path):
    path = tmp_path / "permissions.yml"
    path.write_text("permissions: [\n")

    with pytest.raises(PolicyError):
        load_policy(path)


def test_repository_policy_is_valid():
    policy = load_policy(REPO_POLICY)

    assert policy.permissions
