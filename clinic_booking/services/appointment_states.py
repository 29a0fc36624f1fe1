"""Appointment lifecycle states and the events that move between them."""

from __future__ import annotations

from datetime import datetime, timedelta

from clinic_booking.services.scheduling_errors import IllegalTransition, InvalidInput

PENDING_PAYMENT = "pending_payment"
SCHEDULED = "scheduled"
CHECKED_IN = "checked_in"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
NO_SHOW = "no_show"

STATES = (PENDING_PAYMENT, SCHEDULED, CHECKED_IN, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW)
TERMINAL_STATES = frozenset({COMPLETED, CANCELLED, NO_SHOW})

KIND_IN_PERSON = "in_person"
KIND_TELECONSULTATION = "teleconsultation"
KINDS = (KIND_IN_PERSON, KIND_TELECONSULTATION)

POLICY_PAY_LATER = "pay_later"
POLICY_PREPAY = "prepay"

# event -> (allowed source states, target state)
TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    "pay_online": (frozenset({PENDING_PAYMENT}), SCHEDULED),
    "mark_cash_paid": (frozenset({PENDING_PAYMENT, SCHEDULED}), SCHEDULED),
    "check_in": (frozenset({SCHEDULED}), CHECKED_IN),
    "start": (frozenset({CHECKED_IN, SCHEDULED}), IN_PROGRESS),
    "complete": (frozenset({IN_PROGRESS}), COMPLETED),
    "cancel": (frozenset({PENDING_PAYMENT, SCHEDULED, CHECKED_IN}), CANCELLED),
    "mark_no_show": (frozenset({SCHEDULED, CHECKED_IN}), NO_SHOW),
}
EVENTS = ("book",) + tuple(TRANSITIONS)
PAYMENT_EVENTS = frozenset({"pay_online", "mark_cash_paid"})


def occupies_slot(state: str) -> bool:
    return state not in TERMINAL_STATES


def initial_state(kind: str, policy: str) -> str:
    """State chosen by the ``book`` event."""

    if kind not in KINDS:
        raise InvalidInput(f"unknown appointment kind: {kind!r}")
    if kind == KIND_IN_PERSON and policy == POLICY_PAY_LATER:
        return SCHEDULED
    return PENDING_PAYMENT


def next_state(
    current: str,
    event: str,
    *,
    now: datetime,
    starts_at: datetime,
    ends_at: datetime,
    checkin_grace: timedelta = timedelta(0),
    no_show_grace: timedelta = timedelta(0),
) -> str:
    """Return the target state of ``event`` or raise :class:`IllegalTransition`."""

    if event == "book":
        raise IllegalTransition("book only applies when an appointment is created", event=event)
    if event not in TRANSITIONS:
        raise InvalidInput(f"unknown event: {event!r}")
    sources, target = TRANSITIONS[event]
    if current not in sources:
        raise IllegalTransition(f"cannot {event} an appointment that is {current}", event=event, state=current)
    if event == "check_in" and now < starts_at - checkin_grace:
        raise IllegalTransition("check-in opens shortly before the appointment", event=event, state=current)
    if event == "mark_no_show" and now < ends_at + no_show_grace:
        raise IllegalTransition("no-show can only be recorded after the slot ends", event=event, state=current)
    return target
