# tests/test_users.py — Profile, password change and user management tests
import pytest
from httpx import AsyncClient

from auth import AuthService
from errors import Unauthorized
from models import UserRole

PASSWORD = "Onboard1!"


@pytest.mark.asyncio
async def test_get_own_profile(client: AsyncClient, employee_user, auth_headers):
    headers = await auth_headers(employee_user)
    resp = await client.get("/api/v1/users/profile", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["department"] == "Engineering"


@pytest.mark.asyncio
async def test_update_own_profile(client: AsyncClient, employee_user, auth_headers):
    headers = await auth_headers(employee_user)
    resp = await client.put("/api/v1/users/profile", json={"first_name": "Emily"}, headers=headers)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["first_name"] == "Emily"
    assert user["last_name"] == "Tester"


@pytest.mark.asyncio
async def test_change_password_revokes_other_sessions(client: AsyncClient, db_session, employee_user, auth_headers):
    other = await AuthService(db_session).login(employee_user.email, PASSWORD)
    headers = await auth_headers(employee_user)

    resp = await client.post("/api/v1/users/change-password", json={
        "current_password": PASSWORD,
        "new_password": "N3w!Password",
    }, headers=headers)
    assert resp.status_code == 200

    # Current session survives, the other one is gone
    assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 200
    with pytest.raises(Unauthorized):
        await AuthService(db_session).verify_token(other.token)

    resp = await client.post("/api/v1/auth/login", json={"email": employee_user.email, "password": "N3w!Password"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_change_password_wrong_current(client: AsyncClient, employee_user, auth_headers):
    headers = await auth_headers(employee_user)
    resp = await client.post("/api/v1/users/change-password", json={
        "current_password": "Not1!theone",
        "new_password": "N3w!Password",
    }, headers=headers)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_list_users_as_hr(client: AsyncClient, hr_user, employee_user, admin_user, auth_headers):
    headers = await auth_headers(hr_user)
    resp = await client.get("/api/v1/users", headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 3

    resp = await client.get("/api/v1/users", params={"role": "employee"}, headers=headers)
    assert [u["email"] for u in resp.json()["users"]] == [employee_user.email]


@pytest.mark.asyncio
async def test_list_users_forbidden_for_employee(client: AsyncClient, employee_user, auth_headers):
    headers = await auth_headers(employee_user)
    resp = await client.get("/api/v1/users", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["kind"] == "forbidden"


@pytest.mark.asyncio
async def test_employee_can_view_self_but_not_others(client: AsyncClient, employee_user, hr_user, auth_headers):
    headers = await auth_headers(employee_user)
    assert (await client.get(f"/api/v1/users/{employee_user.id}", headers=headers)).status_code == 200
    assert (await client.get(f"/api/v1/users/{hr_user.id}", headers=headers)).status_code == 403


@pytest.mark.asyncio
async def test_employee_cannot_promote_self(client: AsyncClient, employee_user, auth_headers):
    headers = await auth_headers(employee_user)
    resp = await client.put(f"/api/v1/users/{employee_user.id}", json={"role": "admin"}, headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_hr_can_promote_employee_but_not_to_admin(client: AsyncClient, hr_user, employee_user, auth_headers):
    headers = await auth_headers(hr_user)
    resp = await client.put(f"/api/v1/users/{employee_user.id}", json={"role": "admin"}, headers=headers)
    assert resp.status_code == 403

    resp = await client.put(f"/api/v1/users/{employee_user.id}", json={"role": "hr_manager"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == UserRole.HR_MANAGER.value


@pytest.mark.asyncio
async def test_hr_cannot_edit_admin(client: AsyncClient, hr_user, admin_user, auth_headers):
    headers = await auth_headers(hr_user)
    resp = await client.put(f"/api/v1/users/{admin_user.id}", json={"first_name": "Changed"}, headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_update_email_conflict(client: AsyncClient, admin_user, employee_user, hr_user, auth_headers):
    headers = await auth_headers(admin_user)
    resp = await client.put(f"/api/v1/users/{employee_user.id}", json={"email": "HR@acme-hr.com"}, headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_admin_deactivates_user_and_sessions(client: AsyncClient, admin_user, employee_user, auth_headers):
    employee_headers = await auth_headers(employee_user)
    headers = await auth_headers(admin_user)

    resp = await client.post(f"/api/v1/users/{employee_user.id}/deactivate", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["is_active"] is False

    assert (await client.get("/api/v1/auth/me", headers=employee_headers)).status_code == 401


@pytest.mark.asyncio
async def test_admin_cannot_deactivate_self(client: AsyncClient, admin_user, auth_headers):
    headers = await auth_headers(admin_user)
    resp = await client.post(f"/api/v1/users/{admin_user.id}/deactivate", headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_hr_cannot_deactivate(client: AsyncClient, hr_user, employee_user, auth_headers):
    headers = await auth_headers(hr_user)
    resp = await client.post(f"/api/v1/users/{employee_user.id}/deactivate", headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_profile_null_name_is_ignored(client: AsyncClient, employee_user, auth_headers):
    headers = await auth_headers(employee_user)
    resp = await client.put("/api/v1/users/profile", json={
        "first_name": None, "last_name": None, "department": None,
    }, headers=headers)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["first_name"] == "Emma"
    assert user["last_name"] == "Tester"
    # department is optional, so null clears it
    assert user["department"] is None
