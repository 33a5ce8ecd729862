import pytest

from app.features.permissions.exceptions import UnknownEntityType, UnknownRole
from app.features.permissions.types import AccessLevel, Audience, Operation, QueryPermission, RoleName


def test_operation_parse_and_str():
    op = Operation.parse("read Lesson")

    assert op.access_level is AccessLevel.READ
    assert op.entity_type == "Lesson"
    assert str(op) == "Read Lesson"
    assert op == Operation(AccessLevel.READ, "Lesson")
    assert op.has_fields
    assert not Operation.parse("Delete Lesson").has_fields


def test_operation_parse_resolves_canonical_entity_type():
    assert Operation.parse("read lesson") == Operation(AccessLevel.READ, "Lesson")
    assert str(Operation.parse("DELETE lessoncomment")) == "Delete LessonComment"
    assert Operation.parse("read widget", entity_types=["Widget"]).entity_type == "Widget"


def test_operation_parse_rejects_unknown_entity_type():
    with pytest.raises(UnknownEntityType):
        Operation.parse("Read Ghost")
    with pytest.raises(UnknownEntityType):
        Operation.parse("Read Lesson", entity_types=["Widget"])


@pytest.mark.parametrize("value", ["Read", "Read Lesson Extra", "Publish Lesson", ""])
def test_operation_parse_rejects_bad_input(value):
    with pytest.raises(ValueError):
        Operation.parse(value)


def test_audience_and_role_parsing():
    assert Audience.parse("everyone") is Audience.EVERYONE
    assert RoleName.parse("admin") is RoleName.ADMIN
    with pytest.raises(ValueError):
        Audience.parse("nobody")
    with pytest.raises(UnknownRole):
        RoleName.parse("guest")


def test_query_permission_restrict():
    perm = QueryPermission(Operation.parse("Read User"), frozenset({"login", "name"}), granted=True)

    assert perm.allows("Login")
    assert not perm.allows("email")
    assert perm.restrict({"login": "ada", "name": "Ada", "email": "ada@example.com"}) == {
        "login": "ada",
        "name": "Ada",
    }
