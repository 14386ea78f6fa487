"""
services/appointment/state.py
Appointment state machine: which statuses each event may start from.
"""

from shared.models.models import AppointmentStatus

S = AppointmentStatus

# Visit progression reported by the assigned doctor
VISIT_SEQUENCE = (
    S.ASSIGNED,
    S.ON_THE_WAY,
    S.ARRIVED,
    S.SERVICE_STARTED,
    S.COMPLETED,
)
ADVANCE_TARGETS = frozenset(VISIT_SEQUENCE[1:])

TERMINAL = frozenset({S.COMPLETED, S.DECLINED_BY_DOCTOR, S.CANCELLED_BY_PATIENT})

# Patient may cancel anything still open
CANCELLABLE = frozenset(AppointmentStatus) - TERMINAL

# Rescheduling stops once treatment has begun
RESCHEDULABLE = frozenset({S.PENDING_ASSIGNMENT, S.ASSIGNED, S.ON_THE_WAY, S.ARRIVED})


def advance_sources(target: AppointmentStatus, ordering: str) -> frozenset[AppointmentStatus]:
    """
    Statuses from which the assigned doctor may move to `target`.

    lenient: any active visit status (steps may be skipped or repeated).
    strict:  only the immediate predecessor in VISIT_SEQUENCE.
    """
    if target not in ADVANCE_TARGETS:
        return frozenset()
    if ordering == "strict":
        return frozenset({VISIT_SEQUENCE[VISIT_SEQUENCE.index(target) - 1]})
    return frozenset(VISIT_SEQUENCE[:-1])


def parse_status(value: str) -> AppointmentStatus | None:
    try:
        return AppointmentStatus(value)
    except ValueError:
        return None
