"""
tests/test_admin.py
Tests for admin endpoints: access control, user provisioning and the
role rules, catalog maintenance, appointment oversight and the audit log.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    AdminAuditLog,
    Appointment,
    DoctorProfile,
    Service,
    User,
    UserRole,
)
from tests.conftest import TEST_PASSWORD, auth_headers


async def _audit_actions(db: AsyncSession) -> list[str]:
    result = await db.execute(select(AdminAuditLog.action).order_by(AdminAuditLog.created_at))
    return list(result.scalars())


# ── Access Control ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_patient_cannot_access_admin_endpoints(client: AsyncClient, patient_user: User):
    response = await client.get("/admin/users", headers=auth_headers(patient_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_doctor_cannot_access_admin_endpoints(client: AsyncClient, doctor_user: User):
    response = await client.get("/admin/appointments", headers=auth_headers(doctor_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_cannot_access_admin(client: AsyncClient):
    response = await client.get("/admin/users")
    assert response.status_code == 401


# ── User Provisioning ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_creates_doctor_with_profile(
    client: AsyncClient, admin_user: User, db: AsyncSession
):
    response = await client.post(
        "/admin/users",
        headers=auth_headers(admin_user),
        json={
            "email": "New.Doctor@example.com",
            "password": "secret99",
            "display_name": "Dr. New",
            "role": "doctor",
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "new.doctor@example.com"
    assert data["role"] == "doctor"

    profile = await db.scalar(
        select(DoctorProfile.id).join(User, User.id == DoctorProfile.user_id)
        .where(User.email == "new.doctor@example.com")
    )
    assert profile is not None
    assert await _audit_actions(db) == ["CREATE_USER"]

    login = await client.post(
        "/auth/login", json={"email": "new.doctor@example.com", "password": "secret99"}
    )
    assert login.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["admin", "superadmin"])
async def test_admin_cannot_create_privileged_accounts(
    client: AsyncClient, admin_user: User, role: str
):
    response = await client.post(
        "/admin/users",
        headers=auth_headers(admin_user),
        json={"email": "boss@example.com", "password": "secret99", "role": role},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_superadmin_creates_admin(client: AsyncClient, superadmin_user: User):
    response = await client.post(
        "/admin/users",
        headers=auth_headers(superadmin_user),
        json={"email": "admin2@example.com", "password": "secret99", "role": "admin"},
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_duplicate_email_rejected(
    client: AsyncClient, admin_user: User, patient_user: User
):
    response = await client.post(
        "/admin/users",
        headers=auth_headers(admin_user),
        json={"email": patient_user.email, "password": "secret99", "role": "patient"},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "The email address is already in use by another account."


@pytest.mark.asyncio
async def test_short_password_rejected(client: AsyncClient, admin_user: User):
    response = await client.post(
        "/admin/users",
        headers=auth_headers(admin_user),
        json={"email": "short@example.com", "password": "123", "role": "patient"},
    )
    assert response.status_code == 400


# ── User Management ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_users_with_role_filter(
    client: AsyncClient, admin_user: User, patient_user: User, doctor_user: User
):
    response = await client.get("/admin/users?role=doctor", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert [u["email"] for u in response.json()["users"]] == [doctor_user.email]


@pytest.mark.asyncio
async def test_promote_patient_to_doctor(
    client: AsyncClient, admin_user: User, patient_user: User, db: AsyncSession
):
    response = await client.put(
        f"/admin/users/{patient_user.email}",
        headers=auth_headers(admin_user),
        json={"role": "doctor", "full_name": "Dr. Priya"},
    )
    assert response.status_code == 200
    assert response.json()["user"]["role"] == "doctor"
    assert response.json()["user"]["full_name"] == "Dr. Priya"

    profile = await db.scalar(
        select(DoctorProfile.id).where(DoctorProfile.user_id == patient_user.id)
    )
    assert profile is not None

    # Old token carries the old role claim
    me = await client.get("/auth/me", headers=auth_headers(patient_user))
    assert me.status_code == 401


@pytest.mark.asyncio
async def test_admin_cannot_elevate_to_admin(
    client: AsyncClient, admin_user: User, patient_user: User
):
    response = await client.put(
        f"/admin/users/{patient_user.email}",
        headers=auth_headers(admin_user),
        json={"role": "admin"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_modify_superadmin(
    client: AsyncClient, admin_user: User, superadmin_user: User
):
    response = await client.put(
        f"/admin/users/{superadmin_user.email}",
        headers=auth_headers(admin_user),
        json={"full_name": "Hacked"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_superadmin_cannot_change_own_role(client: AsyncClient, superadmin_user: User):
    response = await client.put(
        f"/admin/users/{superadmin_user.email}",
        headers=auth_headers(superadmin_user),
        json={"role": "admin"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_disable_user_blocks_login(
    client: AsyncClient, admin_user: User, patient_user: User
):
    response = await client.put(
        f"/admin/users/{patient_user.email}",
        headers=auth_headers(admin_user),
        json={"status": "inactive"},
    )
    assert response.status_code == 200
    assert response.json()["user"]["status"] == "inactive"

    login = await client.post(
        "/auth/login", json={"email": patient_user.email, "password": TEST_PASSWORD}
    )
    assert login.status_code == 401


@pytest.mark.asyncio
async def test_update_unknown_user(client: AsyncClient, admin_user: User):
    response = await client.put(
        "/admin/users/ghost@example.com",
        headers=auth_headers(admin_user),
        json={"full_name": "Ghost"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_update_short_password_rejected(
    client: AsyncClient, admin_user: User, patient_user: User
):
    response = await client.put(
        f"/admin/users/{patient_user.email}",
        headers=auth_headers(admin_user),
        json={"password": "abc"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_delete_user_is_soft(
    client: AsyncClient, admin_user: User, patient_user: User, db: AsyncSession
):
    response = await client.delete(
        f"/admin/users/{patient_user.email}", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200

    row = (await db.execute(
        select(User.deleted_at, User.status).where(User.id == patient_user.id)
    )).one()
    assert row.deleted_at is not None
    assert row.status.value == "inactive"

    listing = await client.get("/admin/users", headers=auth_headers(admin_user))
    assert patient_user.email not in [u["email"] for u in listing.json()["users"]]


@pytest.mark.asyncio
async def test_admin_cannot_delete_admin(
    client: AsyncClient, admin_user: User, superadmin_user: User
):
    response = await client.delete(
        f"/admin/users/{superadmin_user.email}", headers=auth_headers(admin_user)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_superadmin_cannot_delete_self(client: AsyncClient, superadmin_user: User):
    response = await client.delete(
        f"/admin/users/{superadmin_user.email}", headers=auth_headers(superadmin_user)
    )
    assert response.status_code == 403


# ── Catalog ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_service_crud(client: AsyncClient, admin_user: User, db: AsyncSession):
    headers = auth_headers(admin_user)
    created = await client.post(
        "/admin/services",
        headers=headers,
        json={"name": "Root Canal", "base_price": "4500", "estimated_duration_minutes": 120},
    )
    assert created.status_code == 201
    service_id = created.json()["service"]["id"]
    assert service_id.startswith("service_")

    updated = await client.put(
        f"/admin/services/{service_id}", headers=headers, json={"base_price": "4000"}
    )
    assert updated.status_code == 200
    assert updated.json()["service"]["base_price"] == 4000.0

    deleted = await client.delete(f"/admin/services/{service_id}", headers=headers)
    assert deleted.status_code == 200
    assert await db.get(Service, service_id) is None

    assert await _audit_actions(db) == ["CREATE_SERVICE", "UPDATE_SERVICE", "DELETE_SERVICE"]


@pytest.mark.asyncio
async def test_service_duplicate_id(client: AsyncClient, admin_user: User, service: Service):
    response = await client.post(
        "/admin/services",
        headers=auth_headers(admin_user),
        json={"id": service.id, "name": "Dup", "base_price": "1", "estimated_duration_minutes": 10},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_unknown_service(client: AsyncClient, admin_user: User):
    response = await client.put(
        "/admin/services/nope", headers=auth_headers(admin_user), json={"name": "X"}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_offer_crud(client: AsyncClient, admin_user: User):
    headers = auth_headers(admin_user)
    created = await client.post(
        "/admin/offers", headers=headers, json={"id": "diwali", "title": "Festive 10% off"}
    )
    assert created.status_code == 201

    updated = await client.put(
        "/admin/offers/diwali", headers=headers, json={"title": "Festive 15% off"}
    )
    assert updated.json()["offer"]["title"] == "Festive 15% off"

    assert (await client.delete("/admin/offers/diwali", headers=headers)).status_code == 200
    assert (await client.delete("/admin/offers/diwali", headers=headers)).status_code == 404


# ── Appointment Oversight ──────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_all_appointments_enriched(
    client: AsyncClient, admin_user: User, appointment: Appointment
):
    response = await client.get("/admin/appointments", headers=auth_headers(admin_user))
    assert response.status_code == 200
    items = response.json()["appointments"]
    assert len(items) == 1
    assert items[0]["patient_name"] == "Priya Patient"
    assert items[0]["service_name"] == "Scaling & Polishing"
    assert items[0]["doctor_name"] == "Unassigned"

    filtered = await client.get(
        "/admin/appointments?status=completed", headers=auth_headers(admin_user)
    )
    assert filtered.json()["appointments"] == []


@pytest.mark.asyncio
async def test_appointment_history(
    client: AsyncClient, admin_user: User, doctor_user: User, appointment: Appointment
):
    await client.post(f"/doctor/requests/{appointment.id}/accept", headers=auth_headers(doctor_user))

    response = await client.get(
        f"/admin/appointments/{appointment.id}/history", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    transitions = [(h["from_status"], h["to_status"]) for h in response.json()["history"]]
    assert transitions == [(None, "pending_assignment"), ("pending_assignment", "assigned")]
