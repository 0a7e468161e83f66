"""
Batch upsert writers, one per entity type.

Each writer maps a finite batch of upstream records to rows and writes them
in a single transaction. Store errors propagate to the caller; there is no
retry here because a batch is idempotent and cheap to redo.
"""

from datetime import datetime, timezone
from typing import Sequence

import structlog
from sqlalchemy import Connection, Engine

from gorgias_warehouse.models import (
    GorgiasCustomer,
    GorgiasMessage,
    GorgiasTag,
    GorgiasTicket,
    GorgiasUser,
)
from gorgias_warehouse.relations import reconcile_ticket_tags
from gorgias_warehouse.rows import (
    EMBEDDED_CUSTOMER_COLUMNS,
    customer_row,
    message_row,
    tag_row,
    ticket_row,
    upsert_rows,
    user_row,
)
from gorgias_warehouse.schema import (
    WarehouseCustomer,
    WarehouseMessage,
    WarehouseTag,
    WarehouseTicket,
    WarehouseUser,
)

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Connection-level upserts (run inside the caller's transaction)
# ---------------------------------------------------------------------------

def upsert_users(conn: Connection, users: Sequence[GorgiasUser], synced_at: datetime) -> int:
    return upsert_rows(conn, WarehouseUser.__table__, [user_row(u, synced_at) for u in users])


def upsert_tags(conn: Connection, tags: Sequence[GorgiasTag], synced_at: datetime) -> int:
    return upsert_rows(conn, WarehouseTag.__table__, [tag_row(t, synced_at) for t in tags])


def upsert_customers(
    conn: Connection,
    customers: Sequence[GorgiasCustomer],
    synced_at: datetime,
) -> int:
    return upsert_rows(
        conn, WarehouseCustomer.__table__, [customer_row(c, synced_at) for c in customers]
    )


def upsert_embedded_customers(
    conn: Connection,
    tickets: Sequence[GorgiasTicket],
    synced_at: datetime,
) -> int:
    """
    Make sure every customer referenced by the batch exists.

    The ticket payload only carries a customer snapshot, so existing rows
    get their identity columns refreshed and keep everything else.
    """
    customers = {t.customer.id: t.customer for t in tickets if t.customer}
    if not customers:
        return 0
    return upsert_rows(
        conn,
        WarehouseCustomer.__table__,
        [customer_row(c, synced_at) for c in customers.values()],
        update_columns=EMBEDDED_CUSTOMER_COLUMNS,
    )


def upsert_tickets(conn: Connection, tickets: Sequence[GorgiasTicket], synced_at: datetime) -> int:
    upsert_embedded_customers(conn, tickets, synced_at)
    written = upsert_rows(
        conn, WarehouseTicket.__table__, [ticket_row(t, synced_at) for t in tickets]
    )
    reconcile_ticket_tags(conn, tickets, synced_at=synced_at)
    return written


def upsert_messages(
    conn: Connection,
    messages: Sequence[GorgiasMessage],
    synced_at: datetime,
) -> int:
    return upsert_rows(
        conn, WarehouseMessage.__table__, [message_row(m, synced_at) for m in messages]
    )


# ---------------------------------------------------------------------------
# Engine-level writers (one transaction per batch)
# ---------------------------------------------------------------------------

def write_users(engine: Engine | None, users: Sequence[GorgiasUser]) -> int:
    """Upsert a batch of agents. Returns rows written (0 when no store)."""
    if engine is None or not users:
        return 0
    with engine.begin() as conn:
        written = upsert_users(conn, users, _now())
    logger.debug("Wrote users", count=written)
    return written


def write_tags(engine: Engine | None, tags: Sequence[GorgiasTag]) -> int:
    if engine is None or not tags:
        return 0
    with engine.begin() as conn:
        written = upsert_tags(conn, tags, _now())
    logger.debug("Wrote tags", count=written)
    return written


def write_customers(engine: Engine | None, customers: Sequence[GorgiasCustomer]) -> int:
    if engine is None or not customers:
        return 0
    with engine.begin() as conn:
        written = upsert_customers(conn, customers, _now())
    logger.debug("Wrote customers", count=written)
    return written


def write_tickets(engine: Engine | None, tickets: Sequence[GorgiasTicket]) -> int:
    """
    Upsert a batch of tickets.

    Embedded customers are written first so the foreign key holds, then the
    tickets, then each ticket's tag set is replaced. All of it commits as
    one transaction.
    """
    if engine is None or not tickets:
        return 0
    with engine.begin() as conn:
        written = upsert_tickets(conn, tickets, _now())
    logger.debug("Wrote tickets", count=written)
    return written


def write_messages(engine: Engine | None, messages: Sequence[GorgiasMessage]) -> int:
    if engine is None or not messages:
        return 0
    with engine.begin() as conn:
        written = upsert_messages(conn, messages, _now())
    logger.debug("Wrote messages", count=written)
    return written
