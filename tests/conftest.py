"""Shared fixtures: a small seeded clinic and a fixed calendar day."""

from datetime import date

import pytest

from clinic_booking.engine import CallContext, ConversationEngine
from clinic_booking.models import Clinic, Department, Doctor
from clinic_booking.providers import InMemoryClinicBackend

# A Sunday; "next Monday" is 2026-10-19
TODAY = date(2026, 10, 18)

CLINIC_PHONE = "+15550100"
CALLER_PHONE = "+15557654321"

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]


def make_backend() -> InMemoryClinicBackend:
    return InMemoryClinicBackend(
        clinics=[Clinic(id="c1", name="Riverside Clinic", phone=CLINIC_PHONE)],
        departments=[
            Department(id="cardio", clinic_id="c1", name="Cardiology"),
            Department(id="derm", clinic_id="c1", name="Dermatology"),
            Department(id="general", clinic_id="c1", name="General Medicine"),
            Department(id="closed", clinic_id="c1", name="Radiology", is_active=False),
        ],
        doctors=[
            Doctor(id="doc-lee", clinic_id="c1", department_id="cardio", name="Sarah Lee",
                   available_days=WEEKDAYS, available_times=["09:00", "14:00", "14:30"]),
            Doctor(id="doc-patel", clinic_id="c1", department_id="general", name="Raj Patel",
                   available_days=WEEKDAYS, available_times=["10:00", "11:00"]),
            Doctor(id="doc-okafor", clinic_id="c1", department_id="general", name="Grace Okafor",
                   available_days=["Tuesday"], available_times=["15:00"]),
        ],
    )


@pytest.fixture
def backend():
    return make_backend()


@pytest.fixture
def clinic(backend):
    return backend.clinics[0]


@pytest.fixture
def ctx(clinic):
    return CallContext(call_sid="CA123", caller_phone=CALLER_PHONE, clinic=clinic)


@pytest.fixture
def engine(backend):
    return ConversationEngine(directory=backend, booking=backend, timeout=1.0, today=lambda: TODAY)
