"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database (aiosqlite) recreated for
every test, fakeredis in place of Redis, and one user per role.
"""

import os
import tempfile
import uuid
from datetime import date, timedelta
from decimal import Decimal

# Must be set before anything imports config.settings
_DB_PATH = os.path.join(tempfile.gettempdir(), f"dental_test_{os.getpid()}.db")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("APP_ENV", "test")

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

import config.redis_client as redis_module
from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from main import app
from services.payment.gateway import gateway_breaker
from shared.models import models  # noqa: F401  (registers tables)
from shared.models.models import (
    Address,
    Appointment,
    AppointmentStatus,
    AppointmentStatusLog,
    DoctorProfile,
    PaymentStatus,
    Service,
    User,
    UserRole,
    UserStatus,
)
from shared.utils.security import hash_password, issue_access_token

TEST_PASSWORD = "password123"


# ── Helpers ───────────────────────────────────────────────────

def auth_headers(user: User) -> dict:
    issued = issue_access_token(user.id, user.role.value, user.email)
    return {"Authorization": f"Bearer {issued.token}"}


async def make_user(
    db: AsyncSession,
    role: UserRole,
    email: str | None = None,
    full_name: str | None = None,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
        full_name=full_name,
        role=role,
        status=UserStatus.ACTIVE,
        password_hash=hash_password(TEST_PASSWORD),
    )
    db.add(user)
    if role == UserRole.DOCTOR:
        db.add(DoctorProfile(user_id=user.id))
    await db.commit()
    return user


async def make_appointment(
    db: AsyncSession,
    patient: User,
    service: Service,
    address: Address,
    status: AppointmentStatus = AppointmentStatus.PENDING_ASSIGNMENT,
    doctor: User | None = None,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    estimated_cost: Decimal = Decimal("1500.00"),
) -> Appointment:
    appointment = Appointment(
        id=uuid.uuid4(),
        patient_id=patient.id,
        service_id=service.id,
        address_id=address.id,
        doctor_id=doctor.id if doctor else None,
        requested_date=date.today() + timedelta(days=3),
        requested_time_slot="10:00-11:00",
        estimated_cost=estimated_cost,
        status=status,
        payment_status=payment_status,
    )
    db.add(appointment)
    db.add(AppointmentStatusLog(
        appointment_id=appointment.id,
        from_status=None,
        to_status=status.value,
        changed_by_id=patient.id,
    ))
    await db.commit()
    return appointment


# ── Infrastructure ────────────────────────────────────────────

@pytest_asyncio.fixture(autouse=True)
async def _schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_gateway_breaker():
    yield
    gateway_breaker.close()


@pytest.fixture
def fake_redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest_asyncio.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(fake_redis, monkeypatch):
    """HTTP client against the app. Lifespan is not run; Redis is faked."""
    app.dependency_overrides[get_redis] = lambda: fake_redis
    monkeypatch.setattr(redis_module, "redis_client", fake_redis)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Users ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def patient_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.PATIENT, "patient@example.com", "Priya Patient")


@pytest_asyncio.fixture
async def other_patient(db: AsyncSession) -> User:
    return await make_user(db, UserRole.PATIENT, "other@example.com")


@pytest_asyncio.fixture
async def doctor_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.DOCTOR, "doctor@example.com", "Dr. Mehta")


@pytest_asyncio.fixture
async def second_doctor(db: AsyncSession) -> User:
    return await make_user(db, UserRole.DOCTOR, "doctor2@example.com", "Dr. Rao")


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.ADMIN, "admin@example.com", "Admin")


@pytest_asyncio.fixture
async def superadmin_user(db: AsyncSession) -> User:
    return await make_user(db, UserRole.SUPERADMIN, "root@example.com", "Root")


# ── Domain Data ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def service(db: AsyncSession) -> Service:
    svc = Service(
        id="service2",
        name="Scaling & Polishing",
        description="Professional teeth cleaning.",
        base_price=Decimal("1500.00"),
        estimated_duration_minutes=60,
    )
    db.add(svc)
    await db.commit()
    return svc


@pytest_asyncio.fixture
async def address(db: AsyncSession, patient_user: User) -> Address:
    addr = Address(
        id=uuid.uuid4(),
        owner_id=patient_user.id,
        address_line_1="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        zip_code="560001",
        label="Home",
        is_default=True,
    )
    db.add(addr)
    await db.commit()
    return addr


@pytest_asyncio.fixture
async def appointment(
    db: AsyncSession, patient_user: User, service: Service, address: Address
) -> Appointment:
    return await make_appointment(db, patient_user, service, address)
