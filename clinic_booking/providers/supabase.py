"""Supabase (PostgREST) clinic backend.

Talks to the project's REST endpoint at ``{SUPABASE_URL}/rest/v1`` with the
service-role key.  Tables used: ``clinics``, ``departments``, ``doctors``,
``appointments``, ``call_logs``, ``conversation_logs``.

Double booking is prevented by the database, not by a read-then-write here.
The ``appointments`` table needs::

    create unique index appointments_active_slot
        on appointments (doctor_id, appointment_date, appointment_time)
        where status in ('pending', 'confirmed');

PostgREST answers a violating insert with HTTP 409, which is surfaced as
``BookingConflictError``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Iterator

import httpx

from clinic_booking.models.booking import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentRequest,
    CallLogEntry,
    ConversationLogEntry,
)
from clinic_booking.models.directory import Clinic, Department, Doctor

from .base import BookingConflictError, ClinicBackend, CollaboratorError

logger = logging.getLogger(__name__)


class SupabaseClinicBackend(ClinicBackend):
    """ClinicBackend backed by Supabase's PostgREST API."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url or not service_role_key:
            raise ValueError("Supabase URL and service role key must both be provided.")
        self._client = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise CollaboratorError(f"{method} {table} failed: {e}") from e

        if resp.status_code == 409:
            raise BookingConflictError(resp.text)
        if resp.is_error:
            raise CollaboratorError(
                f"{method} {table} returned {resp.status_code}: {resp.text}"
            )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise CollaboratorError(f"{method} {table} returned invalid JSON: {e}") from e

    @staticmethod
    @contextmanager
    def _rows_of(table: str) -> Iterator[None]:
        """Turn a row that does not fit its model into a CollaboratorError."""
        try:
            yield
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise CollaboratorError(f"unexpected {table} row: {e!r}") from e

    # ------------------------------------------------------------------
    # DirectoryProvider
    # ------------------------------------------------------------------

    async def get_clinic_by_phone(self, phone: str) -> Clinic | None:
        rows = await self._request(
            "GET", "clinics",
            params={"select": "id,name,phone", "phone": f"eq.{phone}", "limit": "1"},
        )
        with self._rows_of("clinics"):
            return Clinic(**rows[0]) if rows else None

    async def list_departments(self, clinic_id: str) -> list[Department]:
        rows = await self._request(
            "GET", "departments",
            params={
                "select": "id,clinic_id,name,description",
                "clinic_id": f"eq.{clinic_id}",
                "is_active": "eq.true",
                "order": "name",
            },
        )
        with self._rows_of("departments"):
            return [
                Department(**{**row, "description": row.get("description") or ""})
                for row in rows or []
            ]

    async def list_doctors(self, clinic_id: str, department_id: str) -> list[Doctor]:
        rows = await self._request(
            "GET", "doctors",
            params={
                "select": "id,clinic_id,department_id,name,specialization,available_days,available_times",
                "clinic_id": f"eq.{clinic_id}",
                "department_id": f"eq.{department_id}",
                "is_active": "eq.true",
                "order": "name",
            },
        )
        with self._rows_of("doctors"):
            return [self._to_doctor(row) for row in rows or []]

    @staticmethod
    def _to_doctor(row: dict) -> Doctor:
        return Doctor(
            id=row["id"],
            clinic_id=row.get("clinic_id") or "",
            department_id=row.get("department_id") or "",
            name=row["name"],
            specialization=row.get("specialization") or "",
            available_days=row.get("available_days") or [],
            available_times=[t[:5] for t in row.get("available_times") or []],
        )

    # ------------------------------------------------------------------
    # BookingProvider
    # ------------------------------------------------------------------

    async def available_slots(self, doctor_id: str, day: date) -> list[str]:
        rows = await self._request(
            "GET", "doctors",
            params={
                "select": "id,name,available_days,available_times",
                "id": f"eq.{doctor_id}",
                "limit": "1",
            },
        )
        if not rows:
            return []
        with self._rows_of("doctors"):
            doctor = self._to_doctor(rows[0])
        if day.strftime("%A") not in doctor.available_days:
            return []

        booked = await self._request(
            "GET", "appointments",
            params={
                "select": "appointment_time",
                "doctor_id": f"eq.{doctor_id}",
                "appointment_date": f"eq.{day.isoformat()}",
                "status": f"in.({','.join(ACTIVE_STATUSES)})",
            },
        )
        with self._rows_of("appointments"):
            taken = {row["appointment_time"][:5] for row in booked or []}
        return sorted(t for t in doctor.available_times if t not in taken)

    async def insert_appointment(self, request: AppointmentRequest) -> Appointment:
        rows = await self._request(
            "POST", "appointments",
            json=[request.model_dump(mode="json")],
            prefer="return=representation",
        )
        if not rows:
            raise CollaboratorError("appointments insert returned no row")
        with self._rows_of("appointments"):
            row = rows[0]
            row["appointment_time"] = str(row["appointment_time"])[:5]
            row["id"] = str(row["id"])
            row["notes"] = row.get("notes") or ""
            appointment = Appointment(**row)
        logger.info("Appointment %s inserted for doctor %s", appointment.id, request.doctor_id)
        return appointment

    async def append_call_log(self, entry: CallLogEntry) -> None:
        await self._request(
            "POST", "call_logs", json=[entry.model_dump(mode="json")], prefer="return=minimal"
        )

    async def update_call_duration(self, call_sid: str, duration_seconds: int) -> None:
        await self._request(
            "PATCH", "call_logs",
            params={"call_sid": f"eq.{call_sid}"},
            json={"call_duration": duration_seconds},
            prefer="return=minimal",
        )

    async def append_conversation_log(self, entry: ConversationLogEntry) -> None:
        await self._request(
            "POST", "conversation_logs",
            json=[entry.model_dump(mode="json")],
            prefer="return=minimal",
        )
