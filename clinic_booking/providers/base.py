"""Abstract base classes for the clinic directory and booking backends.

The conversation engine only ever talks to these two interfaces.  Any
backend (in-memory, Supabase/PostgREST, ...) implements both.
"""

from abc import ABC, abstractmethod
from datetime import date

from clinic_booking.models.booking import (
    Appointment,
    AppointmentRequest,
    CallLogEntry,
    ConversationLogEntry,
)
from clinic_booking.models.directory import Clinic, Department, Doctor


class CollaboratorError(RuntimeError):
    """A directory or booking call failed or timed out."""


class BookingConflictError(CollaboratorError):
    """The requested doctor/date/time is already held by another appointment."""


class DirectoryProvider(ABC):
    """Read-only view of clinics, departments and doctors."""

    @abstractmethod
    async def get_clinic_by_phone(self, phone: str) -> Clinic | None:
        """Return the clinic whose published number is ``phone``, if any."""

    @abstractmethod
    async def list_departments(self, clinic_id: str) -> list[Department]:
        """Return the clinic's active departments, ordered by name."""

    @abstractmethod
    async def list_doctors(self, clinic_id: str, department_id: str) -> list[Doctor]:
        """Return the department's active doctors, ordered by name."""


class BookingProvider(ABC):
    """Appointment availability, persistence and call audit logs."""

    @abstractmethod
    async def available_slots(self, doctor_id: str, day: date) -> list[str]:
        """Return open ``HH:MM`` slots for the doctor on ``day``, ascending.

        Must honour the doctor's weekly ``available_days`` and exclude times
        already held by a pending or confirmed appointment.
        """

    @abstractmethod
    async def insert_appointment(self, request: AppointmentRequest) -> Appointment:
        """Persist a new appointment.

        Must atomically verify that no pending/confirmed appointment holds
        the same doctor, date and time.  Raises:
            BookingConflictError: the slot is taken.
            CollaboratorError: any other persistence failure.
        """

    @abstractmethod
    async def append_call_log(self, entry: CallLogEntry) -> None:
        """Append a per-call summary row."""

    @abstractmethod
    async def update_call_duration(self, call_sid: str, duration_seconds: int) -> None:
        """Patch the duration on the call's summary row (no-op if none)."""

    @abstractmethod
    async def append_conversation_log(self, entry: ConversationLogEntry) -> None:
        """Append a per-turn audit row."""


class ClinicBackend(DirectoryProvider, BookingProvider):
    """Convenience base for backends that serve both roles."""
