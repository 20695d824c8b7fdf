"""In-process clinic backend for tests, demos and single-node deployments."""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import date

from clinic_booking.models.booking import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentRequest,
    CallLogEntry,
    ConversationLogEntry,
)
from clinic_booking.models.directory import Clinic, Department, Doctor

from .base import BookingConflictError, ClinicBackend

log = logging.getLogger("clinic_booking.providers.memory")


class InMemoryClinicBackend(ClinicBackend):
    """Directory and booking backend held in plain Python lists.

    Usage::

        backend = InMemoryClinicBackend(
            clinics=[Clinic(id="c1", name="Riverside Clinic", phone="+15550100")],
            departments=[Department(id="d1", clinic_id="c1", name="Cardiology")],
            doctors=[Doctor(id="doc1", clinic_id="c1", department_id="d1",
                            name="Sarah Lee", available_days=["Monday"],
                            available_times=["09:00", "14:00"])],
        )
    """

    def __init__(
        self,
        clinics: list[Clinic] | None = None,
        departments: list[Department] | None = None,
        doctors: list[Doctor] | None = None,
    ) -> None:
        self.clinics: list[Clinic] = list(clinics or [])
        self.departments: list[Department] = list(departments or [])
        self.doctors: list[Doctor] = list(doctors or [])
        self.appointments: list[Appointment] = []
        self.call_logs: list[CallLogEntry] = []
        self.conversation_logs: list[ConversationLogEntry] = []
        self._booking_lock = asyncio.Lock()

    # ── DirectoryProvider ─────────────────────────────────────

    async def get_clinic_by_phone(self, phone: str) -> Clinic | None:
        return next((c for c in self.clinics if c.phone == phone), None)

    async def list_departments(self, clinic_id: str) -> list[Department]:
        found = [d for d in self.departments if d.clinic_id == clinic_id and d.is_active]
        return sorted(found, key=lambda d: d.name)

    async def list_doctors(self, clinic_id: str, department_id: str) -> list[Doctor]:
        found = [
            d for d in self.doctors
            if d.clinic_id == clinic_id and d.department_id == department_id and d.is_active
        ]
        return sorted(found, key=lambda d: d.name)

    # ── BookingProvider ───────────────────────────────────────

    def _taken_times(self, doctor_id: str, day: date) -> set[str]:
        return {
            a.appointment_time
            for a in self.appointments
            if a.doctor_id == doctor_id
            and a.appointment_date == day
            and a.status in ACTIVE_STATUSES
        }

    async def available_slots(self, doctor_id: str, day: date) -> list[str]:
        doctor = next((d for d in self.doctors if d.id == doctor_id), None)
        if doctor is None:
            return []
        if day.strftime("%A") not in doctor.available_days:
            return []
        taken = self._taken_times(doctor_id, day)
        return sorted(t for t in doctor.available_times if t not in taken)

    async def insert_appointment(self, request: AppointmentRequest) -> Appointment:
        async with self._booking_lock:
            taken = self._taken_times(request.doctor_id, request.appointment_date)
            # Yield inside the critical section so concurrent callers really interleave
            await asyncio.sleep(0)
            if request.appointment_time in taken:
                raise BookingConflictError(
                    f"{request.appointment_date} {request.appointment_time} is already booked"
                )
            appointment = Appointment(id=secrets.token_hex(4), **request.model_dump())
            self.appointments.append(appointment)

        log.info(
            "Appointment %s stored: doctor=%s %s %s",
            appointment.id,
            appointment.doctor_id,
            appointment.appointment_date,
            appointment.appointment_time,
        )
        return appointment

    async def append_call_log(self, entry: CallLogEntry) -> None:
        self.call_logs.append(entry)

    async def update_call_duration(self, call_sid: str, duration_seconds: int) -> None:
        for i, entry in enumerate(self.call_logs):
            if entry.call_sid == call_sid:
                self.call_logs[i] = entry.model_copy(update={"call_duration": duration_seconds})

    async def append_conversation_log(self, entry: ConversationLogEntry) -> None:
        self.conversation_logs.append(entry)


def demo_backend(clinic_phone: str) -> InMemoryClinicBackend:
    """Small seeded clinic answering on ``clinic_phone``, for local runs."""
    weekdays = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    times = ["09:00", "09:30", "10:00", "10:30", "11:00", "14:00", "14:30", "15:00", "15:30"]
    return InMemoryClinicBackend(
        clinics=[Clinic(id="demo-clinic", name="Riverside Medical Clinic", phone=clinic_phone)],
        departments=[
            Department(id="cardio", clinic_id="demo-clinic", name="Cardiology"),
            Department(id="general", clinic_id="demo-clinic", name="General Medicine"),
            Department(id="peds", clinic_id="demo-clinic", name="Pediatrics"),
        ],
        doctors=[
            Doctor(id="doc-lee", clinic_id="demo-clinic", department_id="cardio",
                   name="Sarah Lee", specialization="Cardiologist",
                   available_days=weekdays, available_times=times),
            Doctor(id="doc-patel", clinic_id="demo-clinic", department_id="general",
                   name="Raj Patel", specialization="General Practitioner",
                   available_days=weekdays, available_times=times),
            Doctor(id="doc-okafor", clinic_id="demo-clinic", department_id="general",
                   name="Grace Okafor", specialization="General Practitioner",
                   available_days=["Monday", "Wednesday", "Friday"], available_times=times[:5]),
            Doctor(id="doc-chen", clinic_id="demo-clinic", department_id="peds",
                   name="Wei Chen", specialization="Pediatrician",
                   available_days=["Tuesday", "Thursday"], available_times=times[5:]),
        ],
    )
