"""Money helpers shared by fees and invoices."""

from __future__ import annotations

import re

from clinic_booking.services.scheduling_errors import InvalidInput

MAX_MONEY_CENTS = 10_000_000 * 100
DEFAULT_CURRENCY = "INR"

_MONEY = re.compile(r"^\s*([0-9]+(?:\.[0-9]{1,2})?)\s*$")


def parse_money_to_cents(txt: str) -> int:
    txt = (txt or "").strip().replace(",", "")
    if txt == "":
        return 0
    m = _MONEY.match(txt)
    if not m:
        raise InvalidInput(f"invalid amount: {txt!r}")
    return int(round(float(m.group(1)) * 100))


def cents_guard(value_cents: int | None, label: str) -> int:
    if value_cents is None:
        return 0
    if value_cents > MAX_MONEY_CENTS:
        raise InvalidInput(f"{label} too large (max 10,000,000.00).")
    if value_cents < 0:
        raise InvalidInput(f"{label} must not be negative.")
    return int(value_cents)


def money(cents: int) -> str:
    return f"{(cents or 0) / 100:.2f}"
