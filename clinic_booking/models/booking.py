"""Pydantic models for appointments and call audit rows."""

from datetime import date, datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

AppointmentStatus = Literal["pending", "confirmed", "completed", "cancelled"]

# Statuses that occupy a doctor's time slot
ACTIVE_STATUSES: tuple[str, ...] = ("pending", "confirmed")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AppointmentRequest(BaseModel):
    """Data collected from the caller, ready to be inserted."""

    clinic_id: str
    department_id: str
    doctor_id: str
    patient_name: str
    phone_number: str
    appointment_date: date
    appointment_time: str  # HH:MM
    status: AppointmentStatus = "pending"
    notes: str = "Booked via AI voice agent"


class Appointment(AppointmentRequest):
    """A persisted appointment."""

    id: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CallLogEntry(BaseModel):
    """One summary row per booked call. Duration is patched at hang-up."""

    clinic_id: str
    call_sid: str
    caller_phone: str
    call_duration: int = 0
    call_summary: str = ""
    appointment_booked: bool = False


class ConversationLogEntry(BaseModel):
    """One audit row per conversational turn."""

    clinic_id: str
    call_sid: str
    caller_phone: str
    conversation_step: str
    user_input: str
    agent_response: str
    created_at: datetime = Field(default_factory=_utcnow)
