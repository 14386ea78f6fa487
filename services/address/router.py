"""
services/address/router.py
Patient address book.

At most one address per owner is the default. Every write that sets
is_default locks the owner's row, clears the other defaults and writes
the address in one transaction.
"""

import uuid
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, run_in_transaction
from shared.exceptions import NotFound
from shared.middleware.auth import require_patient
from shared.models.models import Address, User
from shared.schemas.schemas import AddressCreate, AddressResponse, AddressUpdate, MessageResponse

router = APIRouter(prefix="/addresses", tags=["Addresses"])


# ── Helpers ───────────────────────────────────────────────────

async def _lock_owner(db: AsyncSession, owner_id: uuid.UUID) -> None:
    """Serialize address writes of one owner (no-op on SQLite, which locks the whole db)."""
    await db.execute(select(User.id).where(User.id == owner_id).with_for_update())


async def _clear_defaults(
    db: AsyncSession, owner_id: uuid.UUID, keep_id: uuid.UUID | None = None
) -> None:
    stmt = update(Address).where(Address.owner_id == owner_id, Address.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(Address.id != keep_id)
    await db.execute(
        stmt.values(is_default=False).execution_options(synchronize_session=False)
    )


async def _get_owned_address_or_404(
    db: AsyncSession, address_id: uuid.UUID, owner_id: uuid.UUID
) -> Address:
    """Missing and foreign addresses are reported the same way."""
    result = await db.execute(
        select(Address)
        .where(Address.id == address_id, Address.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    address = result.scalar_one_or_none()
    if not address:
        raise NotFound("Address not found or unauthorized.")
    return address


# ── Endpoints ─────────────────────────────────────────────────

@router.get("")
async def list_addresses(
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """The caller's addresses, default first."""
    result = await db.execute(
        select(Address)
        .where(Address.owner_id == current_user.id)
        .order_by(Address.is_default.desc(), Address.created_at.desc())
    )
    addresses = [AddressResponse.model_validate(a).model_dump() for a in result.scalars()]
    return {
        "message": "Addresses retrieved successfully.",
        "success": True,
        "addresses": addresses,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_address(
    body: AddressCreate,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    owner_id = current_user.id
    fields = body.model_dump()

    async def work(db: AsyncSession) -> Address:
        await _lock_owner(db, owner_id)
        if fields["is_default"]:
            await _clear_defaults(db, owner_id)
        address = Address(owner_id=owner_id, **fields)
        db.add(address)
        await db.flush()
        return address

    address = await run_in_transaction(db, work)
    return {
        "message": "Address added successfully!",
        "success": True,
        "address": AddressResponse.model_validate(address).model_dump(),
    }


@router.put("/{address_id}")
async def update_address(
    address_id: UUID,
    body: AddressUpdate,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    owner_id = current_user.id
    changes = body.model_dump(exclude_unset=True)
    # Explicit nulls on required columns are ignored
    changes = {
        k: v for k, v in changes.items() if v is not None or k == "address_line_2"
    }

    async def work(db: AsyncSession) -> Address:
        await _lock_owner(db, owner_id)
        address = await _get_owned_address_or_404(db, address_id, owner_id)
        if changes.get("is_default"):
            await _clear_defaults(db, owner_id, keep_id=address.id)
        for field, value in changes.items():
            setattr(address, field, value)
        await db.flush()
        return address

    address = await run_in_transaction(db, work)
    return {
        "message": "Address updated successfully!",
        "success": True,
        "address": AddressResponse.model_validate(address).model_dump(),
    }


@router.delete("/{address_id}", response_model=MessageResponse)
async def delete_address(
    address_id: UUID,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    owner_id = current_user.id

    async def work(db: AsyncSession) -> None:
        address = await _get_owned_address_or_404(db, address_id, owner_id)
        await db.delete(address)
        await db.flush()

    await run_in_transaction(db, work)
    return MessageResponse(message="Address deleted successfully!")
