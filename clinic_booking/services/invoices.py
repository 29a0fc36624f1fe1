"""Invoices attached to appointments.

An appointment gets one pending invoice when it is booked. Payment events
settle it, cancelling the appointment voids it while it is still unpaid.
Numbers run per calendar month: ``APPT-INV-203001-00001``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from flask import current_app

from clinic_booking.services.doctors import fee_for
from clinic_booking.services.payments import money
from clinic_booking.services.scheduling_errors import IllegalTransition, NotFound
from clinic_booking.services.scheduling_store import SchedulingStore, reading
from clinic_booking.services.timeutil import to_utc_iso

PENDING = "pending"
PAID_CASH = "paid_cash"
PAID_ONLINE = "paid_online"
CANCELLED = "cancelled"
PAYMENT_STATUSES = (PENDING, PAID_CASH, PAID_ONLINE, CANCELLED)

_STATUS_FOR_EVENT = {"pay_online": PAID_ONLINE, "mark_cash_paid": PAID_CASH}


def month_key(moment: datetime) -> str:
    return moment.strftime("%Y%m")


def seed_invoice(store: SchedulingStore, appointment: Mapping[str, Any], *, now: datetime) -> dict[str, Any]:
    prefix = current_app.config.get("INVOICE_SERIAL_PREFIX", "APPT-INV")
    amount_cents, currency = fee_for(store, appointment["doctor_id"])
    return store.upsert_invoice(
        appointment["id"],
        {
            "number": store.next_invoice_number(prefix, month_key(now)),
            "amount_cents": amount_cents,
            "currency": currency,
            "payment_status": PENDING,
        },
    )


def apply_payment(
    store: SchedulingStore,
    appointment: Mapping[str, Any],
    event: str,
    *,
    now: datetime,
    reference: str | None = None,
) -> dict[str, Any]:
    invoice = store.get_active_invoice(appointment["id"])
    if invoice is None:
        invoice = seed_invoice(store, appointment, now=now)
    if invoice["payment_status"] != PENDING:
        raise IllegalTransition(
            f"invoice {invoice['number']} is already {invoice['payment_status']}",
            event=event,
        )
    return store.upsert_invoice(
        appointment["id"],
        {
            "payment_status": _STATUS_FOR_EVENT[event],
            "payment_reference": reference,
            "paid_at": to_utc_iso(now),
        },
    )


def void_pending_invoice(store: SchedulingStore, appointment_id: str) -> dict[str, Any] | None:
    """Cancel the invoice if nobody paid it yet; paid invoices stay as they are."""

    invoice = store.get_active_invoice(appointment_id)
    if invoice is None or invoice["payment_status"] != PENDING:
        return invoice
    store.upsert_invoice(appointment_id, {"payment_status": CANCELLED})
    return store.get_invoice(invoice["id"])


def summary(invoice: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not invoice:
        return None
    return {
        "id": invoice["id"],
        "number": invoice["number"],
        "amount_cents": invoice["amount_cents"],
        "amount": money(invoice["amount_cents"]),
        "currency": invoice["currency"],
        "payment_status": invoice["payment_status"],
        "paid_at": invoice["paid_at"],
    }


def get_invoice(invoice_id: str) -> dict[str, Any]:
    with reading() as store:
        invoice = store.get_invoice(invoice_id)
    if not invoice:
        raise NotFound(f"invoice {invoice_id} does not exist", invoice_id=invoice_id)
    return invoice
