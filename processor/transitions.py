"""Status transition rule for the event lifecycle."""
from typing import Dict, FrozenSet

from processor.errors import InvalidTransition
from processor.models import EventStatus

ALLOWED_TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.PUBLISHED, EventStatus.CANCELLED}),
    EventStatus.PUBLISHED: frozenset({EventStatus.CANCELLED}),
    EventStatus.CANCELLED: frozenset(),
}


def can_transition(current: EventStatus, requested: EventStatus) -> bool:
    """Return True if ``current -> requested`` is in the transition table."""
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(current: EventStatus, requested: EventStatus) -> None:
    """
    Validate a status change.

    Args:
        current: Status the event has now
        requested: Status the caller asks for

    Raises:
        InvalidTransition: If the pair is not in the transition table
    """
    if current == EventStatus.CANCELLED:
        raise InvalidTransition(
            current,
            requested,
            f"Cannot transition from CANCELLED to {requested.value}; "
            "CANCELLED events cannot be modified"
        )
    if not can_transition(current, requested):
        allowed = ', '.join(
            sorted(s.value for s in ALLOWED_TRANSITIONS[current])
        )
        raise InvalidTransition(
            current,
            requested,
            f"Cannot transition from {current.value} to {requested.value}; "
            f"{current.value} events can only transition to {allowed}"
        )


def check_mutable(current: EventStatus) -> None:
    """
    Reject any change to a terminal event.

    Raises:
        InvalidTransition: If the event is CANCELLED
    """
    if current == EventStatus.CANCELLED:
        raise InvalidTransition(
            current, current, 'CANCELLED events cannot be modified'
        )


def check_initial_status(requested: EventStatus) -> None:
    """
    Validate the status an event is created with.

    Creation starts from DRAFT, so an explicit initial status must be
    reachable from DRAFT in one step.

    Raises:
        InvalidTransition: If the status cannot be entered at creation
    """
    if requested == EventStatus.DRAFT:
        return
    check_transition(EventStatus.DRAFT, requested)
