import logging
from pathlib import Path

from app.features.permissions.bootstrap import bootstrap_permissions
from app.features.permissions.cache import QueryPermissionCache
from app.features.permissions.policy import load_policy, parse_policy
from app.features.permissions.service import count_permissions, get_query_permission
from app.features.permissions.types import Operation, RoleName


REPO_POLICY = Path(__file__).parents[1] / "permissions.yml"


async def test_bootstrap_without_policy(db, descriptors):
    result = await bootstrap_permissions(db, descriptors=descriptors)

    assert result.created == 21
    assert result.opened == result.granted == 0
    assert result.registry.names() == sorted(RoleName, key=lambda r: r.value)


async def test_bootstrap_is_repeatable(db, descriptors):
    policy = parse_policy({"permissions": [
        {"operation": "Read Lesson", "roles": ["MEMBER"], "fields": ["draft"]},
    ]})

    first = await bootstrap_permissions(db, descriptors=descriptors, policy=policy)
    second = await bootstrap_permissions(db, descriptors=descriptors, policy=policy)

    assert first.granted == 1
    assert second.created == 0
    assert second.granted == 0
    assert await count_permissions(db, "Lesson") == 12


async def test_bootstrap_applies_policy(db, descriptors):
    policy = parse_policy({"permissions": [
        {"operation": "Read Course", "public": True, "fields": ["status"]},
        {"operation": "Delete Course", "roles": ["OWNER"]},
    ]})

    result = await bootstrap_permissions(db, descriptors=descriptors, policy=policy)

    assert result.opened == 1
    assert result.granted == 1
    anonymous = await get_query_permission(db, Operation.parse("Read Course"))
    assert anonymous.fields == {"name", "status"}
    assert (await get_query_permission(db, Operation.parse("Delete Course"), ["OWNER"])).granted


async def test_bootstrap_accepts_lower_case_policy_entries(db, descriptors):
    policy = parse_policy({"permissions": [
        {"operation": "read course", "public": True, "fields": ["Status"]},
        {"operation": "delete course", "roles": ["owner"]},
    ]})

    result = await bootstrap_permissions(db, descriptors=descriptors, policy=policy)

    assert (result.opened, result.granted) == (1, 1)
    assert (await get_query_permission(db, Operation.parse("Read Course"))).fields == {"name", "status"}


async def test_bootstrap_warns_about_misspelled_public_field(db, descriptors, caplog):
    policy = parse_policy({"permissions": [
        {"operation": "Read Course", "public": True, "fields": ["stauts"]},
    ]})

    with caplog.at_level(logging.WARNING):
        result = await bootstrap_permissions(db, descriptors=descriptors, policy=policy)

    assert result.opened == 0
    assert "stauts" in caplog.text


async def test_bootstrap_invalidates_cache(db, descriptors):
    cache = QueryPermissionCache()
    version = cache.version

    await bootstrap_permissions(db, descriptors=descriptors, cache=cache)

    assert cache.version > version


async def test_bootstrap_with_product_descriptors_and_policy(db):
    await bootstrap_permissions(db, policy=load_policy(REPO_POLICY))

    read_user = Operation.parse("Read User")
    assert await count_permissions(db, "User") == 30

    anonymous = await get_query_permission(db, read_user)
    assert anonymous.fields == {"bio", "created_at", "id", "login", "name", "updated_at"}

    own_profile = await get_query_permission(db, read_user, ["SELF"])
    assert own_profile.fields == anonymous.fields | {"email", "primary_email"}

    assert not (await get_query_permission(db, Operation.parse("Delete Lesson"), ["MEMBER"])).granted
    assert (await get_query_permission(db, Operation.parse("Delete Lesson"), ["OWNER"])).granted
