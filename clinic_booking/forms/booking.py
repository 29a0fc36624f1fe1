"""Request validation for the booking API."""

from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import IntegerField, StringField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, Regexp

from clinic_booking.services.appointment_states import EVENTS, KINDS
from clinic_booking.services.availability import EXCEPTION_KINDS, MIN_SLOT_MINUTES
from clinic_booking.services.scheduling_errors import InvalidInput

DAY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"


class JsonForm(FlaskForm):
    """JSON bodies carry no session cookie, so there is no CSRF token to check."""

    class Meta:
        csrf = False

    def validated(self) -> "JsonForm":
        if not self.validate_on_submit():
            raise InvalidInput("request validation failed", fields=self.errors)
        return self


class ProposeForm(JsonForm):
    doctor_id = StringField("Doctor", validators=[DataRequired(), Length(max=100)])
    patient_id = StringField("Patient", validators=[DataRequired(), Length(max=100)])
    day = StringField("Day", validators=[DataRequired(), Regexp(DAY_PATTERN)])
    start_time = StringField("Start time", validators=[DataRequired(), Regexp(TIME_PATTERN)])
    duration_minutes = IntegerField("Duration", validators=[Optional(), NumberRange(min=1, max=24 * 60)])
    kind = StringField("Kind", default="in_person", validators=[Optional(), AnyOf(KINDS)])
    reason = StringField("Reason", validators=[Optional(), Length(max=500)])


class CancelForm(JsonForm):
    reason = StringField("Reason", validators=[Optional(), Length(max=500)])


class TransitionForm(JsonForm):
    event = StringField("Event", validators=[DataRequired(), AnyOf(EVENTS)])
    payment_reference = StringField("Payment reference", validators=[Optional(), Length(max=200)])
    reason = StringField("Reason", validators=[Optional(), Length(max=500)])


class RescheduleForm(JsonForm):
    day = StringField("Day", validators=[DataRequired(), Regexp(DAY_PATTERN)])
    start_time = StringField("Start time", validators=[DataRequired(), Regexp(TIME_PATTERN)])


class ExceptionForm(JsonForm):
    kind = StringField("Kind", validators=[DataRequired(), AnyOf(EXCEPTION_KINDS)])
    slot_minutes = IntegerField("Slot minutes", validators=[Optional(), NumberRange(min=MIN_SLOT_MINUTES)])
    reason = StringField("Reason", validators=[Optional(), Length(max=500)])


class FeeForm(JsonForm):
    amount_cents = IntegerField("Amount (cents)", validators=[Optional(), NumberRange(min=0)])
    amount = StringField("Amount")
    currency = StringField("Currency", validators=[Optional(), Regexp(r"^[A-Za-z]{3}$")])
