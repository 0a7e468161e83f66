"""
Read-only queries over the warehouse.

These are the calls other parts of the application make instead of hitting
the Gorgias API. Every function takes the (optional) engine and returns an
empty or zero result when the warehouse is not configured.
"""

from typing import Any

import structlog
from sqlalchemy import Engine, func, select, update

from gorgias_warehouse.schema import (
    WarehouseCustomer,
    WarehouseMessage,
    WarehouseTag,
    WarehouseTicket,
    WarehouseTicketTag,
    WarehouseUser,
)
from gorgias_warehouse.state import SyncCursorStore

logger = structlog.get_logger(__name__)


def _empty_stats() -> dict[str, int]:
    return {
        "total_tickets": 0,
        "open_tickets": 0,
        "closed_tickets": 0,
        "total_customers": 0,
        "total_messages": 0,
        "total_users": 0,
        "total_tags": 0,
    }


def _count(conn, column) -> int:
    return conn.execute(select(func.count(column))).scalar_one()


def get_warehouse_stats(engine: Engine | None) -> dict[str, int]:
    """Ticket counts by status plus totals for every mirrored entity."""
    stats = _empty_stats()
    if engine is None:
        return stats

    with engine.connect() as conn:
        by_status = dict(
            conn.execute(
                select(WarehouseTicket.status, func.count(WarehouseTicket.id))
                .group_by(WarehouseTicket.status)
            ).all()
        )
        stats["open_tickets"] = by_status.get("open", 0)
        stats["closed_tickets"] = by_status.get("closed", 0)
        stats["total_tickets"] = sum(by_status.values())
        stats["total_customers"] = _count(conn, WarehouseCustomer.id)
        stats["total_messages"] = _count(conn, WarehouseMessage.id)
        stats["total_users"] = _count(conn, WarehouseUser.id)
        stats["total_tags"] = _count(conn, WarehouseTag.id)

    return stats


def get_channel_breakdown(engine: Engine | None) -> dict[str, int]:
    """Ticket count per channel, largest first."""
    if engine is None:
        return {}

    ticket_count = func.count(WarehouseTicket.id)
    with engine.connect() as conn:
        rows = conn.execute(
            select(WarehouseTicket.channel, ticket_count)
            .group_by(WarehouseTicket.channel)
            .order_by(ticket_count.desc(), WarehouseTicket.channel)
        ).all()
    return {channel: count for channel, count in rows}


def get_ticket(engine: Engine | None, ticket_id: int) -> dict[str, Any] | None:
    """
    One ticket with its tag names and messages (oldest first).

    Returns None when the ticket is not in the warehouse.
    """
    if engine is None:
        return None

    with engine.connect() as conn:
        row = conn.execute(
            select(WarehouseTicket.__table__).where(WarehouseTicket.id == ticket_id)
        ).mappings().first()
        if row is None:
            return None

        tags = conn.execute(
            select(WarehouseTag.name)
            .join(WarehouseTicketTag, WarehouseTicketTag.tag_id == WarehouseTag.id)
            .where(WarehouseTicketTag.ticket_id == ticket_id)
            .order_by(WarehouseTag.name)
        ).scalars().all()

        messages = conn.execute(
            select(WarehouseMessage.__table__)
            .where(WarehouseMessage.ticket_id == ticket_id)
            .order_by(WarehouseMessage.gorgias_created_at, WarehouseMessage.id)
        ).mappings().all()

    ticket = dict(row)
    ticket["tags"] = list(tags)
    ticket["messages"] = [dict(m) for m in messages]
    return ticket


def get_tickets_by_customer_email(
    engine: Engine | None,
    email: str,
    limit: int = 20,
) -> list[dict[str, Any]]:
    """Tickets of one customer, newest first. Email match is case-insensitive."""
    if engine is None or not email:
        return []

    with engine.connect() as conn:
        rows = conn.execute(
            select(WarehouseTicket.__table__)
            .where(func.lower(WarehouseTicket.customer_email) == email.strip().lower())
            .order_by(WarehouseTicket.gorgias_created_at.desc())
            .limit(limit)
        ).mappings().all()
    return [dict(row) for row in rows]


def get_sync_status(engine: Engine | None) -> list[dict[str, Any]]:
    """Sync cursor rows: entity type, last synced at, total synced."""
    return [status.to_dict() for status in SyncCursorStore(engine).get_status()]


def recent_sync_logs(engine: Engine | None, limit: int = 10) -> list[dict[str, Any]]:
    return SyncCursorStore(engine).recent_logs(limit)


def refresh_customer_ticket_counts(engine: Engine | None) -> int:
    """
    Recompute `ticket_count` and `open_ticket_count` for every customer.

    Returns:
        Number of customer rows updated
    """
    if engine is None:
        return 0

    customer_id = WarehouseCustomer.__table__.c.id
    ticket_count = (
        select(func.count(WarehouseTicket.id))
        .where(WarehouseTicket.customer_id == customer_id)
        .scalar_subquery()
    )
    open_ticket_count = (
        select(func.count(WarehouseTicket.id))
        .where(WarehouseTicket.customer_id == customer_id, WarehouseTicket.status == "open")
        .scalar_subquery()
    )

    with engine.begin() as conn:
        result = conn.execute(
            update(WarehouseCustomer.__table__).values(
                ticket_count=ticket_count,
                open_ticket_count=open_ticket_count,
            )
        )

    logger.info("Refreshed customer ticket counts", customers=result.rowcount)
    return result.rowcount
