"""Repository pattern implementations for data access."""

from src.db.repositories.businesses import AsyncBusinessRepository
from src.db.repositories.calls import (
    AsyncCallEventRepository,
    AsyncCallRepository,
)
from src.db.repositories.leads import (
    AsyncAppointmentRepository,
    AsyncLeadRepository,
)

__all__ = [
    # Tenant configuration
    "AsyncBusinessRepository",
    # Calls
    "AsyncCallRepository",
    "AsyncCallEventRepository",
    # Tool artifacts
    "AsyncLeadRepository",
    "AsyncAppointmentRepository",
]
