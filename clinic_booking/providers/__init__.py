"""Directory and booking backends."""

from .base import (
    BookingConflictError,
    BookingProvider,
    ClinicBackend,
    CollaboratorError,
    DirectoryProvider,
)
from .memory import InMemoryClinicBackend, demo_backend

__all__ = [
    "BookingConflictError",
    "BookingProvider",
    "ClinicBackend",
    "CollaboratorError",
    "DirectoryProvider",
    "InMemoryClinicBackend",
    "demo_backend",
]
