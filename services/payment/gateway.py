"""
services/payment/gateway.py
Payment gateway collaborator. Settlement asks the gateway for an outcome
through a circuit breaker; the gateway never touches the database.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pybreaker import CircuitBreaker, CircuitBreakerListener

from config.settings import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Charge:
    appointment_id: UUID
    amount: Decimal
    currency: str
    payment_method: str


@dataclass(frozen=True)
class GatewayResult:
    approved: bool
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


class GatewayError(Exception):
    """The gateway could not be reached or answered garbage."""


class PaymentGateway(ABC):
    name = "base"

    @abstractmethod
    def authorize(self, charge: Charge) -> GatewayResult:
        """Approve or decline `charge`. Raise GatewayError when the gateway is unreachable."""


class ApproveAllGateway(PaymentGateway):
    """Approves every charge. Stands in until a real gateway is configured."""
    name = "approve_all"

    def authorize(self, charge: Charge) -> GatewayResult:
        return GatewayResult(approved=True)


class _LogListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            f"Circuit breaker '{cb.name}' changed from {old_state.name} to {new_state.name}"
        )


gateway_breaker = CircuitBreaker(
    fail_max=settings.GATEWAY_BREAKER_FAIL_MAX,
    reset_timeout=settings.GATEWAY_BREAKER_RESET_SECONDS,
    listeners=[_LogListener()],
    name="payment_gateway",
)

_GATEWAYS = {
    ApproveAllGateway.name: ApproveAllGateway,
}


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; override in tests to script gateway outcomes."""
    return _GATEWAYS[settings.PAYMENT_GATEWAY]()
