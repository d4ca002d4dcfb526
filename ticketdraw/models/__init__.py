from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .ticket import Ticket, TicketState  # noqa: F401
from .scan import OfflineScanEntry, ScanAudit, ScanEvent  # noqa: F401
from .draw import DrawRecord  # noqa: F401

__all__ = [
    "Base",
    "Ticket",
    "TicketState",
    "OfflineScanEntry",
    "ScanAudit",
    "ScanEvent",
    "DrawRecord",
]
