"""Data models for the booking engine."""

from .booking import (
    Appointment,
    AppointmentRequest,
    CallLogEntry,
    ConversationLogEntry,
)
from .directory import Clinic, Department, Doctor
from .state import (
    CompleteState,
    ConfirmationState,
    ConversationState,
    DateState,
    DepartmentState,
    DoctorState,
    GreetingState,
    NameState,
    TimeState,
    TransferState,
)

__all__ = [
    "Appointment",
    "AppointmentRequest",
    "CallLogEntry",
    "Clinic",
    "CompleteState",
    "ConfirmationState",
    "ConversationLogEntry",
    "ConversationState",
    "DateState",
    "Department",
    "DepartmentState",
    "Doctor",
    "DoctorState",
    "GreetingState",
    "NameState",
    "TimeState",
    "TransferState",
]
