"""
Database Package
================

Exports key database components.
"""

from ticketmemory.db.models import (
    utcnow,
    Base,
    SessionRecord,
    TicketContextRecord,
    LegacyTicketContextRecord,
)
from ticketmemory.db.connection import (
    init_db,
    get_session_maker,
    table_exists,
    run_in_transaction,
    vacuum,
    drop_all,
    close_db,
)
