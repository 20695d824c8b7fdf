"""Pydantic models for the clinic directory (read-only to the engine)."""

from pydantic import BaseModel


class Clinic(BaseModel):
    id: str
    name: str
    phone: str = ""


class Department(BaseModel):
    id: str
    clinic_id: str = ""
    name: str
    description: str = ""
    is_active: bool = True


class Doctor(BaseModel):
    """A bookable doctor.

    ``available_days`` holds weekday names ("Monday", ...) and
    ``available_times`` holds ``HH:MM`` strings offered on those days.
    """

    id: str
    clinic_id: str = ""
    department_id: str = ""
    name: str
    specialization: str = ""
    available_days: list[str] = []
    available_times: list[str] = []
    is_active: bool = True
