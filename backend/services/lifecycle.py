"""
Lifecycle state machines for emergency requests and ambulances.

Request:   pending → assigned → en_route → completed
           pending | assigned | en_route → cancelled
Ambulance: offline ⇄ available ⇄ on_trip

on_trip → available only happens when the request it serves is completed or
cancelled; drivers never do it directly.
"""

from enum import Enum

from errors import InvalidTransition, ValidationError


class RequestStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AmbulanceStatus(str, Enum):
    OFFLINE = "offline"
    AVAILABLE = "available"
    ON_TRIP = "on_trip"


class AmbulanceType(str, Enum):
    BASIC = "basic"
    ADVANCED = "advanced"
    ICU = "icu"


class EmergencyType(str, Enum):
    CARDIAC = "cardiac"
    ACCIDENT = "accident"
    RESPIRATORY = "respiratory"
    OTHER = "other"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


REQUEST_TRANSITIONS = {
    RequestStatus.PENDING: {RequestStatus.ASSIGNED, RequestStatus.CANCELLED},
    RequestStatus.ASSIGNED: {RequestStatus.EN_ROUTE, RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.EN_ROUTE: {RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.COMPLETED: set(),  # terminal
    RequestStatus.CANCELLED: set(),  # terminal
}

AMBULANCE_TRANSITIONS = {
    AmbulanceStatus.OFFLINE: {AmbulanceStatus.AVAILABLE},
    AmbulanceStatus.AVAILABLE: {AmbulanceStatus.OFFLINE, AmbulanceStatus.ON_TRIP},
    AmbulanceStatus.ON_TRIP: {AmbulanceStatus.AVAILABLE},
}

TERMINAL_REQUEST_STATUSES = {RequestStatus.COMPLETED, RequestStatus.CANCELLED}
ACTIVE_REQUEST_STATUSES = {RequestStatus.ASSIGNED, RequestStatus.EN_ROUTE}

_MACHINES = {
    RequestStatus: REQUEST_TRANSITIONS,
    AmbulanceStatus: AMBULANCE_TRANSITIONS,
}


def can_transition(machine: type, from_state: str, to_state: str) -> bool:
    """
    Check a transition against the table for `machine` (RequestStatus or
    AmbulanceStatus). Unknown status strings are never valid.
    """
    try:
        src = machine(from_state)
        dst = machine(to_state)
    except ValueError:
        return False
    return dst in _MACHINES[machine].get(src, set())


def ensure_transition(machine: type, from_state: str, to_state: str):
    if not can_transition(machine, from_state, to_state):
        from_state = getattr(from_state, "value", from_state)
        to_state = getattr(to_state, "value", to_state)
        raise InvalidTransition(
            f"Cannot change status from {from_state} to {to_state}",
            fromStatus=from_state,
            toStatus=to_state,
        )


def is_terminal(status: str) -> bool:
    try:
        return RequestStatus(status) in TERMINAL_REQUEST_STATUSES
    except ValueError:
        return False


def parse_choice(enum_cls: type, value, default=None) -> str:
    """Validate an enum-valued field from a client payload, returning its stored string."""
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{enum_cls.__name__} is required")
        return enum_cls(default).value
    try:
        return enum_cls(str(value).lower()).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {enum_cls.__name__} '{value}' (expected one of: {allowed})")
