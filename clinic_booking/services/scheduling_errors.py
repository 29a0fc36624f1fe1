"""Error taxonomy surfaced by the scheduling services."""

from __future__ import annotations


class SchedulingError(Exception):
    """Base exception for scheduling operations.

    ``code`` is the stable machine-readable identifier returned by the API,
    ``http_status`` the status the JSON API answers with.
    """

    code = "scheduling_error"
    http_status = 400

    def __init__(self, message: str | None = None, **details) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


# Validation


class InvalidInput(SchedulingError):
    code = "invalid_input"


class InvalidTimeFormat(InvalidInput):
    code = "invalid_time_format"


class InvertedInterval(InvalidInput):
    code = "inverted_interval"


# Availability


class NoAvailability(SchedulingError):
    code = "no_availability"


class OutsideWorkingHours(SchedulingError):
    code = "outside_working_hours"


class SlotMisaligned(SchedulingError):
    code = "slot_misaligned"


class SlotInPast(SchedulingError):
    code = "slot_in_past"


# Admission


class SlotTaken(SchedulingError):
    code = "slot_taken"
    http_status = 409


class IllegalTransition(SchedulingError):
    code = "illegal_transition"


class ScheduleLocked(SchedulingError):
    """Raised when a weekly schedule change would orphan booked appointments."""

    code = "schedule_locked"
    http_status = 409


# Reference


class NotFound(SchedulingError):
    code = "not_found"
    http_status = 404


class DoctorNotFound(NotFound):
    code = "doctor_not_found"


class PatientNotFound(NotFound):
    code = "patient_not_found"


# Storage


class ConcurrencyConflict(SchedulingError):
    """Another writer won the race; callers retry once."""

    code = "concurrency_conflict"
    http_status = 409


class StorageUnavailable(SchedulingError):
    code = "storage_unavailable"
    http_status = 503


__all__ = [
    "SchedulingError",
    "InvalidInput",
    "InvalidTimeFormat",
    "InvertedInterval",
    "NoAvailability",
    "OutsideWorkingHours",
    "SlotMisaligned",
    "SlotInPast",
    "SlotTaken",
    "IllegalTransition",
    "ScheduleLocked",
    "NotFound",
    "DoctorNotFound",
    "PatientNotFound",
    "ConcurrencyConflict",
    "StorageUnavailable",
]
