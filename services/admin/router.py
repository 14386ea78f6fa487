"""
services/admin/router.py
Admin endpoints (admin and superadmin): user provisioning and management,
catalog maintenance, and appointment oversight.

ALL mutations are logged to AdminAuditLog in the same transaction.
"""

import logging
import uuid
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, run_in_transaction
from config.redis_client import get_redis
from services.appointment import service as appointments
from services.appointment.state import parse_status
from services.auth import identity
from services.catalog.router import invalidate_catalog_cache
from shared.exceptions import Forbidden, NotFound, ValidationError
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    Offer,
    Service,
    User,
    UserRole,
    UserStatus,
)
from shared.schemas.schemas import (
    AdminUserCreate,
    AdminUserUpdate,
    MessageResponse,
    OfferCreate,
    OfferResponse,
    OfferUpdate,
    ServiceCreate,
    ServiceResponse,
    ServiceUpdate,
    StatusLogResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.SUPERADMIN)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _log(
    db: AsyncSession,
    admin_id: uuid.UUID,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    ip_address: str | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=ip_address,
    ))


async def _get_user_by_email_or_404(db: AsyncSession, email: str) -> User:
    user = await identity.lookup_by_email(db, email)
    if not user:
        raise NotFound("User not found.")
    return user


# ── User Management ────────────────────────────────────────────────────────────

@router.get("/users")
async def list_users(
    role: Optional[UserRole] = Query(None),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(User).where(User.deleted_at.is_(None)).order_by(User.created_at.desc())
    if role:
        query = query.where(User.role == role)
    result = await db.execute(query)
    return {
        "message": "Users retrieved successfully.",
        "success": True,
        "users": [UserResponse.model_validate(u).model_dump() for u in result.scalars()],
    }


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: AdminUserCreate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Provision an account. Only superadmins may create admin or superadmin accounts."""
    admin_id, admin_role = current_user.id, current_user.role
    role = UserRole(body.role)
    if admin_role == UserRole.ADMIN and role in PRIVILEGED_ROLES:
        raise Forbidden("Admins cannot create admin or superadmin accounts.")

    async def work(db: AsyncSession) -> User:
        user = await identity.create_user(
            db, body.email, body.password, role, full_name=body.display_name
        )
        _log(db, admin_id, "CREATE_USER", "User", str(user.id),
             {"email": user.email, "role": role.value}, _client_ip(request))
        return user

    user = await run_in_transaction(db, work)
    logger.info(f"Admin {admin_id} created {role.value} {user.email}")
    return {
        "message": f"User {user.email} created successfully with role {role.value}.",
        "success": True,
        "uid": str(user.id),
        "email": user.email,
        "role": role.value,
    }


@router.put("/users/{email}")
async def update_user(
    email: str,
    body: AdminUserUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Update name, role, status or password.
    - admins cannot touch admin/superadmin accounts or grant those roles
    - a superadmin cannot change their own role
    """
    admin_id, admin_role = current_user.id, current_user.role
    new_role = UserRole(body.role) if body.role else None
    new_status = UserStatus(body.status) if body.status else None

    if admin_role == UserRole.ADMIN and new_role in PRIVILEGED_ROLES:
        raise Forbidden("Admins cannot elevate users to admin or superadmin.")

    async def work(db: AsyncSession) -> User:
        user = await _get_user_by_email_or_404(db, email)
        if admin_role == UserRole.ADMIN and user.role in PRIVILEGED_ROLES:
            raise Forbidden("Admins cannot modify admin or superadmin accounts.")
        if user.id == admin_id and new_role and new_role != user.role:
            raise Forbidden("Superadmins cannot change their own role.")

        changes: dict = {}
        if body.full_name is not None or body.password is not None:
            await identity.update_credentials(
                db, user, password=body.password, full_name=body.full_name
            )
            if body.full_name is not None:
                changes["full_name"] = body.full_name
            if body.password is not None:
                changes["password"] = "changed"
        if new_role and new_role != user.role:
            await identity.set_role_claim(db, user, new_role)
            changes["role"] = new_role.value
        if new_status:
            await identity.set_disabled(db, user, new_status == UserStatus.INACTIVE)
            changes["status"] = new_status.value

        _log(db, admin_id, "UPDATE_USER", "User", str(user.id), changes, _client_ip(request))
        return user

    user = await run_in_transaction(db, work)
    logger.info(f"Admin {admin_id} updated {user.email}")
    return {
        "message": f"User {user.email} updated successfully.",
        "success": True,
        "user": UserResponse.model_validate(user).model_dump(),
    }


@router.delete("/users/{email}", response_model=MessageResponse)
async def delete_user(
    email: str,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Disable and soft-delete an account. Records owned by the user are kept."""
    admin_id, admin_role = current_user.id, current_user.role

    async def work(db: AsyncSession) -> str:
        user = await _get_user_by_email_or_404(db, email)
        if admin_role == UserRole.ADMIN and user.role in PRIVILEGED_ROLES:
            raise Forbidden("Admins cannot delete admin or superadmin accounts.")
        if user.id == admin_id:
            raise Forbidden("You cannot delete your own account.")
        await identity.delete_user(db, user)
        _log(db, admin_id, "DELETE_USER", "User", str(user.id),
             {"email": user.email}, _client_ip(request))
        return user.email

    deleted_email = await run_in_transaction(db, work)
    logger.info(f"Admin {admin_id} deleted {deleted_email}")
    return MessageResponse(message=f"User {deleted_email} deleted successfully.")


# ── Catalog ────────────────────────────────────────────────────────────────────

@router.post("/services", status_code=status.HTTP_201_CREATED)
async def create_service(
    body: ServiceCreate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    admin_id = current_user.id
    fields = body.model_dump(exclude={"id"})
    service_id = body.id or f"service_{uuid.uuid4().hex[:12]}"

    async def work(db: AsyncSession) -> Service:
        if await db.get(Service, service_id):
            raise ValidationError(f"Service {service_id} already exists.")
        service = Service(id=service_id, **fields)
        db.add(service)
        _log(db, admin_id, "CREATE_SERVICE", "Service", service_id,
             {"name": body.name}, _client_ip(request))
        await db.flush()
        return service

    service = await run_in_transaction(db, work)
    await invalidate_catalog_cache(redis)
    return {
        "message": "Service created successfully.",
        "success": True,
        "service": ServiceResponse.model_validate(service).model_dump(),
    }


@router.put("/services/{service_id}")
async def update_service(
    service_id: str,
    body: ServiceUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    admin_id = current_user.id
    changes = body.model_dump(exclude_unset=True, exclude_none=True)

    async def work(db: AsyncSession) -> Service:
        service = await db.get(Service, service_id, populate_existing=True)
        if not service:
            raise NotFound("Service not found.")
        for field, value in changes.items():
            setattr(service, field, value)
        _log(db, admin_id, "UPDATE_SERVICE", "Service", service_id,
             {k: str(v) for k, v in changes.items()}, _client_ip(request))
        await db.flush()
        return service

    service = await run_in_transaction(db, work)
    await invalidate_catalog_cache(redis)
    return {
        "message": "Service updated successfully.",
        "success": True,
        "service": ServiceResponse.model_validate(service).model_dump(),
    }


@router.delete("/services/{service_id}", response_model=MessageResponse)
async def delete_service(
    service_id: str,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    admin_id = current_user.id

    async def work(db: AsyncSession) -> None:
        service = await db.get(Service, service_id)
        if not service:
            raise NotFound("Service not found.")
        await db.delete(service)
        _log(db, admin_id, "DELETE_SERVICE", "Service", service_id, {}, _client_ip(request))
        await db.flush()

    await run_in_transaction(db, work)
    await invalidate_catalog_cache(redis)
    return MessageResponse(message="Service deleted successfully.")


@router.post("/offers", status_code=status.HTTP_201_CREATED)
async def create_offer(
    body: OfferCreate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    admin_id = current_user.id
    fields = body.model_dump(exclude={"id"})
    offer_id = body.id or f"offer_{uuid.uuid4().hex[:12]}"

    async def work(db: AsyncSession) -> Offer:
        if await db.get(Offer, offer_id):
            raise ValidationError(f"Offer {offer_id} already exists.")
        offer = Offer(id=offer_id, **fields)
        db.add(offer)
        _log(db, admin_id, "CREATE_OFFER", "Offer", offer_id,
             {"title": body.title}, _client_ip(request))
        await db.flush()
        return offer

    offer = await run_in_transaction(db, work)
    await invalidate_catalog_cache(redis)
    return {
        "message": "Offer created successfully.",
        "success": True,
        "offer": OfferResponse.model_validate(offer).model_dump(),
    }


@router.put("/offers/{offer_id}")
async def update_offer(
    offer_id: str,
    body: OfferUpdate,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    admin_id = current_user.id
    changes = body.model_dump(exclude_unset=True, exclude_none=True)

    async def work(db: AsyncSession) -> Offer:
        offer = await db.get(Offer, offer_id, populate_existing=True)
        if not offer:
            raise NotFound("Offer not found.")
        for field, value in changes.items():
            setattr(offer, field, value)
        _log(db, admin_id, "UPDATE_OFFER", "Offer", offer_id, changes, _client_ip(request))
        await db.flush()
        return offer

    offer = await run_in_transaction(db, work)
    await invalidate_catalog_cache(redis)
    return {
        "message": "Offer updated successfully.",
        "success": True,
        "offer": OfferResponse.model_validate(offer).model_dump(),
    }


@router.delete("/offers/{offer_id}", response_model=MessageResponse)
async def delete_offer(
    offer_id: str,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    admin_id = current_user.id

    async def work(db: AsyncSession) -> None:
        offer = await db.get(Offer, offer_id)
        if not offer:
            raise NotFound("Offer not found.")
        await db.delete(offer)
        _log(db, admin_id, "DELETE_OFFER", "Offer", offer_id, {}, _client_ip(request))
        await db.flush()

    await run_in_transaction(db, work)
    await invalidate_catalog_cache(redis)
    return MessageResponse(message="Offer deleted successfully.")


# ── Appointment Oversight ──────────────────────────────────────────────────────

@router.get("/appointments")
async def list_all_appointments(
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every appointment, newest first, with patient, service and doctor names."""
    wanted = None
    if status_filter:
        wanted = parse_status(status_filter)
        if wanted is None:
            raise ValidationError(f"Unknown appointment status: {status_filter}")

    items = await appointments.list_all(db, wanted)

    return {
        "message": "Appointments retrieved successfully.",
        "success": True,
        "appointments": [appointments.to_response(a) for a in items],
    }


@router.get("/appointments/{appointment_id}/history")
async def get_appointment_history(
    appointment_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Status transition log, oldest first."""
    logs = await appointments.history(db, appointment_id)
    return {
        "message": "Appointment history retrieved successfully.",
        "success": True,
        "history": [StatusLogResponse.model_validate(entry).model_dump() for entry in logs],
    }
