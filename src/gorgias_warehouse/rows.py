"""
Row mapping and the generic bulk upsert.

Every mirrored entity is written the same way: map upstream records to
plain row dicts, then issue one INSERT ... ON CONFLICT (id) DO UPDATE per
chunk that overwrites every mutable column with the incoming value.
"""

from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy import Connection, Table
from sqlalchemy.dialects import postgresql, sqlite

from gorgias_warehouse.models import (
    GorgiasCustomer,
    GorgiasMessage,
    GorgiasTag,
    GorgiasTicket,
    GorgiasUser,
)

# Stay well under the bound-parameter limits of both backends
DEFAULT_CHUNK_SIZE = 500

# Columns that keep their first-insert value
NEVER_UPDATED = frozenset({"created_at"})


def _insert_for(conn: Connection, table: Table):
    dialect = conn.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert is not supported on dialect '{dialect}'")


def _dedupe(rows: Iterable[dict[str, Any]], key: Sequence[str]) -> list[dict[str, Any]]:
    """Keep the last row per conflict key; one statement may not touch a row twice."""
    by_key: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[k] for k in key)] = row
    return list(by_key.values())


def upsert_rows(
    conn: Connection,
    table: Table,
    rows: Iterable[dict[str, Any]],
    conflict_key: Sequence[str] = ("id",),
    update_columns: Iterable[str] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Bulk insert-or-update `rows` into `table`.

    Args:
        conn: Connection inside the caller's transaction
        table: Target table
        rows: Row dicts, all with the same keys
        conflict_key: Columns of the unique key
        update_columns: Columns overwritten on conflict (default: every
            column in the rows except the key and created_at)
        chunk_size: Max rows per statement

    Returns:
        Number of distinct rows written
    """
    unique_rows = _dedupe(rows, conflict_key)
    if not unique_rows:
        return 0

    if update_columns is None:
        update_columns = [
            c for c in unique_rows[0] if c not in conflict_key and c not in NEVER_UPDATED
        ]
    update_columns = list(update_columns)

    for start in range(0, len(unique_rows), chunk_size):
        chunk = unique_rows[start:start + chunk_size]
        stmt = _insert_for(conn, table).values(chunk)
        if update_columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(conflict_key),
                set_={c: stmt.excluded[c] for c in update_columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_key))
        conn.execute(stmt)

    return len(unique_rows)


# ---------------------------------------------------------------------------
# Record -> row mappers
# ---------------------------------------------------------------------------

def user_row(user: GorgiasUser, synced_at: datetime) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "firstname": user.firstname,
        "lastname": user.lastname,
        "role_id": user.role.id if user.role else None,
        "role_name": user.role.name if user.role else None,
        "active": user.active,
        "meta": user.meta,
        "gorgias_created_at": user.created_datetime,
        "gorgias_updated_at": user.updated_datetime,
        "synced_at": synced_at,
        "updated_at": synced_at,
    }


def tag_row(tag: GorgiasTag, synced_at: datetime) -> dict[str, Any]:
    return {
        "id": tag.id,
        "name": tag.name,
        "uri": tag.uri,
        "color": tag.decoration.color if tag.decoration else None,
        "emoji": tag.decoration.emoji if tag.decoration else None,
        "gorgias_created_at": tag.created_datetime,
        "gorgias_updated_at": tag.updated_datetime,
        "synced_at": synced_at,
        "updated_at": synced_at,
    }


def customer_row(customer: GorgiasCustomer, synced_at: datetime) -> dict[str, Any]:
    # ticket_count/open_ticket_count are owned by the query layer
    return {
        "id": customer.id,
        "external_id": customer.external_id,
        "email": customer.email,
        "name": customer.name,
        "firstname": customer.firstname,
        "lastname": customer.lastname,
        "language": customer.language,
        "timezone": customer.timezone,
        "note": customer.note,
        "data": customer.data,
        "channels": [c.model_dump() for c in customer.channels] or None,
        "meta": customer.meta,
        "shopify_customer_id": customer.shopify_customer_id,
        "gorgias_created_at": customer.created_datetime,
        "gorgias_updated_at": customer.updated_datetime,
        "synced_at": synced_at,
        "updated_at": synced_at,
    }


# Fields present on the customer snapshot embedded in a ticket
EMBEDDED_CUSTOMER_COLUMNS = ("email", "name", "firstname", "lastname", "synced_at", "updated_at")


def ticket_row(ticket: GorgiasTicket, synced_at: datetime) -> dict[str, Any]:
    customer = ticket.customer
    return {
        "id": ticket.id,
        "uri": ticket.uri,
        "external_id": ticket.external_id,
        "language": ticket.language,
        "status": ticket.status,
        "priority": ticket.priority,
        "channel": ticket.channel,
        "via": ticket.via,
        "from_agent": ticket.from_agent,
        "subject": ticket.subject,
        "excerpt": ticket.excerpt,
        "customer_id": customer.id if customer else None,
        "customer_email": customer.email if customer else None,
        "customer_name": customer.name if customer else None,
        "assignee_user_id": ticket.assignee_user.id if ticket.assignee_user else None,
        "assignee_team_id": ticket.assignee_team.id if ticket.assignee_team else None,
        "assignee_team_name": ticket.assignee_team.name if ticket.assignee_team else None,
        "messages_count": ticket.messages_count,
        "is_unread": ticket.is_unread,
        "opened_datetime": ticket.opened_datetime,
        "last_received_message_datetime": ticket.last_received_message_datetime,
        "last_message_datetime": ticket.last_message_datetime,
        "closed_datetime": ticket.closed_datetime,
        "snooze_datetime": ticket.snooze_datetime,
        "trashed_datetime": ticket.trashed_datetime,
        "spam_datetime": ticket.spam_datetime,
        "integrations": ticket.integrations,
        "meta": ticket.meta,
        "shopify_order_id": ticket.shopify_order_id,
        "gorgias_created_at": ticket.created_datetime,
        "gorgias_updated_at": ticket.updated_datetime,
        "synced_at": synced_at,
        "updated_at": synced_at,
    }


def message_row(message: GorgiasMessage, synced_at: datetime) -> dict[str, Any]:
    sender = message.sender
    receiver = message.receiver
    return {
        "id": message.id,
        "ticket_id": message.ticket_id,
        "uri": message.uri,
        "channel": message.channel,
        "via": message.via,
        "source": message.source,
        "sender_id": sender.id if sender else None,
        "sender_email": sender.email if sender else None,
        "sender_name": sender.name if sender else None,
        "receiver_id": receiver.id if receiver else None,
        "receiver_email": receiver.email if receiver else None,
        "receiver_name": receiver.name if receiver else None,
        "integration_id": message.integration_id,
        "rule_id": message.rule_id,
        "external_id": message.external_id,
        "subject": message.subject,
        "body_text": message.body_text,
        "body_html": message.body_html,
        "stripped_text": message.stripped_text,
        "stripped_html": message.stripped_html,
        "stripped_signature": message.stripped_signature,
        "public": message.public,
        "from_agent": message.from_agent,
        "is_retriable": message.is_retriable,
        "failed_datetime": message.failed_datetime,
        "sent_datetime": message.sent_datetime,
        "opened_datetime": message.opened_datetime,
        "last_sending_error": message.last_sending_error,
        "attachments": message.attachments,
        "macros": message.macros,
        "meta": message.meta,
        "actions": message.actions,
        "gorgias_created_at": message.created_datetime,
        "synced_at": synced_at,
        "updated_at": synced_at,
    }
