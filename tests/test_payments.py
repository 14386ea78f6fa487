"""
tests/test_payments.py
Tests for settlement: fee split, double-settlement protection, gateway
declines, and the gateway circuit breaker.
"""

import asyncio
import time
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from main import app
from services.payment.gateway import (
    GatewayError,
    GatewayResult,
    PaymentGateway,
    get_payment_gateway,
)
from services.payment.settlement import split_fees
from shared.models.models import (
    Address,
    Appointment,
    AppointmentStatus,
    DoctorProfile,
    Payment,
    PaymentStatus,
    Service,
    User,
)
from tests.conftest import auth_headers, make_appointment


class DecliningGateway(PaymentGateway):
    name = "declining"

    def authorize(self, charge):
        return GatewayResult(approved=False, transaction_id="gw_declined_1", reason="insufficient funds")


class BrokenGateway(PaymentGateway):
    name = "broken"

    def authorize(self, charge):
        raise GatewayError("connection reset")


class CountingGateway(PaymentGateway):
    """Approves slowly and remembers every charge it approved."""
    name = "counting"

    def __init__(self):
        self.approved = []

    def authorize(self, charge):
        time.sleep(0.05)
        self.approved.append(charge.appointment_id)
        return GatewayResult(approved=True)


def _pay_body(appointment_id, amount: str = "1500.00", **extra) -> dict:
    return {
        "appointment_id": str(appointment_id),
        "amount": amount,
        "currency": "INR",
        "payment_method": "card",
        **extra,
    }


@pytest.fixture
def use_gateway():
    def _use(gateway: PaymentGateway):
        app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield _use
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest_asyncio.fixture
async def completed_appointment(
    db: AsyncSession, patient_user: User, doctor_user: User, service: Service, address: Address
) -> Appointment:
    return await make_appointment(
        db, patient_user, service, address, AppointmentStatus.COMPLETED, doctor=doctor_user
    )


# ── Fee Split ─────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "amount, expected",
    [
        ("1500.00", ("225.00", "1050.00", "225.00")),
        ("500.00", ("75.00", "350.00", "75.00")),
        ("0.01", ("0.00", "0.01", "0.00")),
        ("99.99", ("15.00", "69.99", "15.00")),
    ],
)
def test_split_fees_sums_to_amount(amount, expected):
    shares = split_fees(Decimal(amount))
    assert shares == tuple(Decimal(x) for x in expected)
    assert sum(shares) == Decimal(amount)


def test_gateway_without_authorize_cannot_be_built():
    class IncompleteGateway(PaymentGateway):
        name = "incomplete"

    with pytest.raises(TypeError):
        IncompleteGateway()


# ── Settlement ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_successful_payment(
    client: AsyncClient,
    patient_user: User,
    doctor_user: User,
    completed_appointment: Appointment,
    db: AsyncSession,
):
    response = await client.post(
        "/payments", headers=auth_headers(patient_user), json=_pay_body(completed_appointment.id)
    )
    assert response.status_code == 200, response.json()
    data = response.json()
    assert data["message"] == "Payment processed successfully!"
    assert data["status"] == "successful"
    payment = data["payment"]
    assert payment["platform_fee_amount"] == 225.0
    assert payment["doctor_fee_amount"] == 1050.0
    assert payment["admin_fee_amount"] == 225.0
    assert payment["gateway_transaction_id"].startswith("TXN_")

    appt = (await db.execute(
        select(Appointment.payment_status, Appointment.payment_id)
        .where(Appointment.id == completed_appointment.id)
    )).one()
    assert appt.payment_status == PaymentStatus.PAID
    assert str(appt.payment_id) == data["payment_id"]

    earnings = await db.scalar(
        select(DoctorProfile.total_earnings).where(DoctorProfile.user_id == doctor_user.id)
    )
    assert Decimal(str(earnings)) == Decimal("1050.00")


@pytest.mark.asyncio
async def test_client_transaction_id_is_kept(
    client: AsyncClient, patient_user: User, completed_appointment: Appointment
):
    response = await client.post(
        "/payments",
        headers=auth_headers(patient_user),
        json=_pay_body(completed_appointment.id, payment_gateway_transaction_id="pay_abc123"),
    )
    assert response.json()["payment"]["gateway_transaction_id"] == "pay_abc123"


@pytest.mark.asyncio
async def test_second_payment_rejected(
    client: AsyncClient, patient_user: User, completed_appointment: Appointment, db: AsyncSession
):
    headers = auth_headers(patient_user)
    first = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
    assert first.status_code == 200

    second = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
    assert second.status_code == 400
    assert second.json()["error"] == "already_settled"

    count = len((await db.execute(
        select(Payment.id).where(Payment.appointment_id == completed_appointment.id)
    )).all())
    assert count == 1


@pytest.mark.asyncio
async def test_declined_payment_is_recorded(
    client: AsyncClient,
    patient_user: User,
    doctor_user: User,
    completed_appointment: Appointment,
    db: AsyncSession,
    use_gateway,
):
    use_gateway(DecliningGateway())
    response = await client.post(
        "/payments", headers=auth_headers(patient_user), json=_pay_body(completed_appointment.id)
    )
    assert response.status_code == 400
    data = response.json()
    assert data["message"] == "Payment failed. Please try again."
    assert data["error"] == "payment_failed"
    assert data["status"] == "failed"

    payment_status = await db.scalar(
        select(Appointment.payment_status).where(Appointment.id == completed_appointment.id)
    )
    assert payment_status == PaymentStatus.FAILED

    earnings = await db.scalar(
        select(DoctorProfile.total_earnings).where(DoctorProfile.user_id == doctor_user.id)
    )
    assert Decimal(str(earnings)) == Decimal("0")


@pytest.mark.asyncio
async def test_retry_after_decline_succeeds(
    client: AsyncClient, patient_user: User, completed_appointment: Appointment, use_gateway
):
    headers = auth_headers(patient_user)
    use_gateway(DecliningGateway())
    await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))

    app.dependency_overrides.pop(get_payment_gateway)
    response = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
    assert response.status_code == 200

    history = await client.get("/payments", headers=headers)
    assert sorted(p["status"] for p in history.json()["payments"]) == ["failed", "successful"]


@pytest.mark.asyncio
async def test_open_breaker_reports_gateway_unavailable(
    client: AsyncClient, patient_user: User, completed_appointment: Appointment, use_gateway
):
    from services.payment.gateway import gateway_breaker

    headers = auth_headers(patient_user)
    use_gateway(BrokenGateway())
    for _ in range(gateway_breaker.fail_max):
        response = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
        assert response.status_code == 500
        assert response.json()["error"] == "gateway_unavailable"

    assert gateway_breaker.current_state == "open"

    # Even a healthy gateway is not called while the circuit is open
    app.dependency_overrides.pop(get_payment_gateway)
    response = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
    assert response.status_code == 500
    assert response.json()["error"] == "gateway_unavailable"


@pytest.mark.asyncio
async def test_concurrent_payments_charge_the_gateway_once(
    client: AsyncClient,
    patient_user: User,
    completed_appointment: Appointment,
    db: AsyncSession,
    use_gateway,
):
    gateway = CountingGateway()
    use_gateway(gateway)
    headers = auth_headers(patient_user)

    responses = await asyncio.gather(
        client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id)),
        client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id)),
    )
    assert sorted(r.status_code for r in responses) == [200, 400]
    loser = next(r for r in responses if r.status_code == 400).json()
    assert loser["error"] == "already_settled"

    # Every approved charge has exactly one record
    assert gateway.approved == [completed_appointment.id]
    payments = (await db.execute(
        select(Payment.status).where(Payment.appointment_id == completed_appointment.id)
    )).scalars().all()
    assert len(payments) == 1

    payment_status = await db.scalar(
        select(Appointment.payment_status).where(Appointment.id == completed_appointment.id)
    )
    assert payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_payment_in_progress_is_rejected_before_gateway(
    client: AsyncClient,
    patient_user: User,
    doctor_user: User,
    service: Service,
    address: Address,
    db: AsyncSession,
    use_gateway,
):
    appt = await make_appointment(
        db, patient_user, service, address, AppointmentStatus.COMPLETED,
        doctor=doctor_user, payment_status=PaymentStatus.PROCESSING,
    )
    gateway = CountingGateway()
    use_gateway(gateway)

    response = await client.post("/payments", headers=auth_headers(patient_user), json=_pay_body(appt.id))
    assert response.status_code == 400
    assert response.json()["message"] == "A payment for this appointment is already in progress."
    assert gateway.approved == []


@pytest.mark.asyncio
async def test_gateway_failure_releases_the_claim(
    client: AsyncClient,
    patient_user: User,
    completed_appointment: Appointment,
    db: AsyncSession,
    use_gateway,
):
    headers = auth_headers(patient_user)
    use_gateway(BrokenGateway())
    response = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
    assert response.status_code == 500
    assert response.json()["error"] == "gateway_unavailable"

    payment_status = await db.scalar(
        select(Appointment.payment_status).where(Appointment.id == completed_appointment.id)
    )
    assert payment_status == PaymentStatus.PENDING
    assert await db.scalar(
        select(Payment.id).where(Payment.appointment_id == completed_appointment.id)
    ) is None

    app.dependency_overrides.pop(get_payment_gateway)
    retry = await client.post("/payments", headers=headers, json=_pay_body(completed_appointment.id))
    assert retry.status_code == 200


@pytest.mark.asyncio
async def test_completion_keeps_in_flight_settlement(
    client: AsyncClient,
    patient_user: User,
    doctor_user: User,
    service: Service,
    address: Address,
    db: AsyncSession,
):
    appt = await make_appointment(
        db, patient_user, service, address, AppointmentStatus.SERVICE_STARTED,
        doctor=doctor_user, payment_status=PaymentStatus.PROCESSING,
    )
    response = await client.put(
        f"/doctor/appointments/{appt.id}/status",
        headers=auth_headers(doctor_user),
        json={"status": "completed"},
    )
    assert response.status_code == 200
    assert response.json()["appointment"]["payment_status"] == "processing"


# ── Validation & Ownership ────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-10"])
async def test_non_positive_amount_rejected(
    client: AsyncClient, patient_user: User, completed_appointment: Appointment, amount: str
):
    response = await client.post(
        "/payments",
        headers=auth_headers(patient_user),
        json=_pay_body(completed_appointment.id, amount=amount),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_pay_for_someone_elses_appointment(
    client: AsyncClient, other_patient: User, completed_appointment: Appointment
):
    response = await client.post(
        "/payments", headers=auth_headers(other_patient), json=_pay_body(completed_appointment.id)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_pay_unknown_appointment(client: AsyncClient, patient_user: User):
    response = await client.post(
        "/payments", headers=auth_headers(patient_user), json=_pay_body(uuid.uuid4())
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_doctor_cannot_pay(
    client: AsyncClient, doctor_user: User, completed_appointment: Appointment
):
    response = await client.post(
        "/payments", headers=auth_headers(doctor_user), json=_pay_body(completed_appointment.id)
    )
    assert response.status_code == 403
