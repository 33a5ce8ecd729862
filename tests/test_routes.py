import httpx
import pytest
from fastapi import Depends, FastAPI, Request

from app.core.database.engine import get_db
from app.features.permissions.bootstrap import bootstrap_permissions
from app.features.permissions.cache import QueryPermissionCache
from app.features.permissions.dependencies import get_caller_roles, query_permission
from app.features.permissions.service import connect_role_permissions
from app.features.permissions.types import Operation, QueryPermission
from app.main import app


def roles_from_header(request: Request):
    header = request.headers.get("X-Roles", "")
    return [r.strip().upper() for r in header.split(",") if r.strip()]


def session_dependency(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return override_get_db


@pytest.fixture
async def client(session_factory, descriptors):
    async with session_factory() as session:
        result = await bootstrap_permissions(session, descriptors=descriptors)

    app.dependency_overrides[get_db] = session_dependency(session_factory)
    app.dependency_overrides[get_caller_roles] = roles_from_header
    app.state.role_registry = result.registry
    app.state.query_permission_cache = QueryPermissionCache()

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.role_registry = None
    app.state.query_permission_cache = None


ADMIN = {"X-Roles": "ADMIN"}


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "permissions_ready": True}


async def test_list_and_count_catalog(client):
    response = await client.get("/permissions/catalog", params={"type": "Lesson", "access_level": "Read"})
    assert response.status_code == 200
    rows = response.json()
    assert [r["field"] for r in rows] == ["body", "draft", "title"]
    assert {r["field"]: r["audience"] for r in rows}["draft"] == "AUTHENTICATED"

    response = await client.get("/permissions/catalog/count", params={"type": "Course"})
    assert response.json() == {"entity_type": "Course", "count": 9}


async def test_check_anonymous(client):
    response = await client.post("/permissions/check", json={"operation": "Read Lesson"})

    assert response.status_code == 200
    assert response.json() == {"operation": "Read Lesson", "fields": ["body", "title"], "granted": True}


async def test_check_unmodeled_operation_is_server_error(client):
    # User is a known entity type, but this catalog was only built for Lesson and Course
    response = await client.post("/permissions/check", json={"operation": "Read User"})

    assert response.status_code == 500


async def test_check_resolves_lower_case_operation(client):
    response = await client.post("/permissions/check", json={"operation": "read lesson"})

    assert response.status_code == 200
    assert response.json()["operation"] == "Read Lesson"


async def test_check_unknown_entity_type_is_bad_request(client):
    response = await client.post("/permissions/check", json={"operation": "Read Ghost"})

    assert response.status_code == 400
    assert "operation" in response.json()


async def test_check_invalid_operation_is_bad_request(client):
    response = await client.post("/permissions/check", json={"operation": "Browse"})

    assert response.status_code == 400
    assert "operation" in response.json()


async def test_grant_requires_admin(client):
    body = {"operation": "Read Lesson", "fields": ["draft"], "roles": ["MEMBER"]}

    assert (await client.post("/permissions/grants", json=body)).status_code == 401
    assert (await client.post("/permissions/grants", json=body, headers={"X-Roles": "MEMBER"})).status_code == 403


async def test_grant_then_check(client):
    body = {"operation": "Read Lesson", "fields": ["draft"], "roles": ["MEMBER"]}

    response = await client.post("/permissions/grants", json=body, headers=ADMIN)
    assert response.json() == {"operation": "Read Lesson", "count": 1}

    response = await client.post("/permissions/check", json={"operation": "Read Lesson"}, headers={"X-Roles": "member"})
    assert response.json()["fields"] == ["body", "draft", "title"]

    # Roles claimed in the body are not the caller's roles
    response = await client.post("/permissions/check", json={"operation": "Read Lesson", "roles": ["MEMBER"]})
    assert response.json()["fields"] == ["body", "title"]

    response = await client.get("/permissions/roles/member")
    assert [p["field"] for p in response.json()["permissions"]] == ["draft"]


async def test_grant_unknown_role_is_bad_request(client):
    body = {"operation": "Read Lesson", "fields": ["draft"], "roles": ["GUEST"]}

    response = await client.post("/permissions/grants", json=body, headers=ADMIN)

    assert response.status_code == 400


async def test_operation_audience_update(client):
    body = {"operation": "Delete Course", "audience": "EVERYONE"}

    response = await client.post("/permissions/audience", json=body, headers=ADMIN)
    assert response.json() == {"operation": "Delete Course", "count": 1}

    response = await client.post("/permissions/check", json={"operation": "Delete Course"})
    assert response.json()["granted"] is True


async def test_single_permission_audience(client):
    rows = (await client.get("/permissions/catalog", params={"type": "Course", "access_level": "Read"})).json()
    status_row = next(r for r in rows if r["field"] == "status")

    response = await client.put(
        f"/permissions/catalog/{status_row['id']}/audience",
        json={"audience": "EVERYONE"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert response.json()["audience"] == "EVERYONE"

    response = await client.put(
        "/permissions/catalog/missing/audience",
        json={"audience": "EVERYONE"},
        headers=ADMIN,
    )
    assert response.status_code == 404


READ_LESSON = Operation.parse("Read Lesson")
LESSON_ROW = {"title": "Intro", "body": "Hello", "draft": "work in progress"}


@pytest.fixture
async def lesson_client(session_factory, descriptors):
    async with session_factory() as session:
        result = await bootstrap_permissions(session, descriptors=descriptors)
        await connect_role_permissions(session, READ_LESSON, ["draft"], ["OWNER"], result.registry)

    lesson_app = FastAPI()

    @lesson_app.get("/lessons/intro")
    async def get_lesson(perm: QueryPermission = Depends(query_permission(READ_LESSON))):
        return perm.restrict(LESSON_ROW)

    lesson_app.dependency_overrides[get_db] = session_dependency(session_factory)
    lesson_app.dependency_overrides[get_caller_roles] = roles_from_header

    transport = httpx.ASGITransport(app=lesson_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_resolver_dependency_restricts_anonymous_caller(lesson_client):
    response = await lesson_client.get("/lessons/intro")

    assert response.status_code == 200
    assert response.json() == {"title": "Intro", "body": "Hello"}


async def test_resolver_dependency_includes_granted_fields(lesson_client):
    owner = (await lesson_client.get("/lessons/intro", headers={"X-Roles": "OWNER"})).json()
    member = (await lesson_client.get("/lessons/intro", headers={"X-Roles": "MEMBER"})).json()

    assert owner == LESSON_ROW
    assert member == {"title": "Intro", "body": "Hello"}
