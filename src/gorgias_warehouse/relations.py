"""
Ticket <-> tag relation reconciler.

A ticket's join rows are replaced wholesale on every sync of that ticket,
so after a batch is written the join table holds exactly the tags the
upstream returned for each ticket in the batch.
"""

from datetime import datetime, timezone
from typing import Sequence

import structlog
from sqlalchemy import Connection, delete, insert

from gorgias_warehouse.models import GorgiasTag, GorgiasTicket
from gorgias_warehouse.rows import tag_row, upsert_rows
from gorgias_warehouse.schema import WarehouseTag, WarehouseTicketTag

logger = structlog.get_logger(__name__)


def distinct_tags(tickets: Sequence[GorgiasTicket]) -> list[GorgiasTag]:
    """All tags seen across the batch, one per id (last occurrence wins)."""
    tags: dict[int, GorgiasTag] = {}
    for ticket in tickets:
        for tag in ticket.tags:
            tags[tag.id] = tag
    return list(tags.values())


def ticket_tag_pairs(tickets: Sequence[GorgiasTicket]) -> list[tuple[int, int]]:
    """(ticket_id, tag_id) pairs for the batch, without duplicates."""
    pairs: dict[tuple[int, int], None] = {}
    for ticket in tickets:
        for tag in ticket.tags:
            pairs[(ticket.id, tag.id)] = None
    return list(pairs)


def reconcile_ticket_tags(
    conn: Connection,
    tickets: Sequence[GorgiasTicket],
    synced_at: datetime | None = None,
) -> int:
    """
    Replace the tag set of every ticket in the batch.

    1. upsert the distinct tags seen in the batch
    2. delete the existing join rows of every ticket in the batch,
       including tickets that now have no tags
    3. insert the new (ticket_id, tag_id) pairs

    Runs on the caller's connection so all three steps commit together.

    Returns:
        Number of join rows inserted
    """
    if not tickets:
        return 0

    synced_at = synced_at or datetime.now(timezone.utc)

    tags = distinct_tags(tickets)
    if tags:
        upsert_rows(conn, WarehouseTag.__table__, [tag_row(t, synced_at) for t in tags])

    ticket_ids = sorted({t.id for t in tickets})
    conn.execute(delete(WarehouseTicketTag).where(WarehouseTicketTag.ticket_id.in_(ticket_ids)))

    pairs = ticket_tag_pairs(tickets)
    if pairs:
        conn.execute(
            insert(WarehouseTicketTag),
            [{"ticket_id": ticket_id, "tag_id": tag_id} for ticket_id, tag_id in pairs],
        )

    logger.debug(
        "Reconciled ticket tags",
        tickets=len(ticket_ids),
        tags=len(tags),
        relations=len(pairs),
    )
    return len(pairs)
