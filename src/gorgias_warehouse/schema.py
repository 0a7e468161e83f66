"""
Warehouse tables for mirrored Gorgias data.

Mirrored entities keep the upstream integer ids as primary keys so every
write is a plain upsert. `synced_at` is the wall-clock time of the write,
`gorgias_*_at` are the upstream timestamps.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class WarehouseUser(Base):
    """Helpdesk agent."""

    __tablename__ = "gorgias_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    firstname: Mapped[Optional[str]] = mapped_column(String(100))
    lastname: Mapped[Optional[str]] = mapped_column(String(100))
    role_id: Mapped[Optional[int]] = mapped_column(Integer)
    role_name: Mapped[Optional[str]] = mapped_column(String(100))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    gorgias_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    gorgias_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WarehouseTag(Base):
    __tablename__ = "gorgias_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    uri: Mapped[Optional[str]] = mapped_column(String(500))
    color: Mapped[Optional[str]] = mapped_column(String(20))
    emoji: Mapped[Optional[str]] = mapped_column(String(10))
    gorgias_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    gorgias_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WarehouseCustomer(Base):
    """
    Helpdesk customer.

    `ticket_count` and `open_ticket_count` are denormalized and refreshed by
    the query layer, never by the sync writer.
    """

    __tablename__ = "gorgias_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    firstname: Mapped[Optional[str]] = mapped_column(String(100))
    lastname: Mapped[Optional[str]] = mapped_column(String(100))
    language: Mapped[Optional[str]] = mapped_column(String(10))
    timezone: Mapped[Optional[str]] = mapped_column(String(50))
    note: Mapped[Optional[str]] = mapped_column(Text)
    data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    channels: Mapped[Optional[list[Any]]] = mapped_column(JSONType)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    shopify_customer_id: Mapped[Optional[str]] = mapped_column(String(100))
    ticket_count: Mapped[int] = mapped_column(Integer, default=0)
    open_ticket_count: Mapped[int] = mapped_column(Integer, default=0)
    gorgias_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    gorgias_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WarehouseTicket(Base):
    __tablename__ = "gorgias_tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    uri: Mapped[Optional[str]] = mapped_column(String(500))
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    language: Mapped[Optional[str]] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    priority: Mapped[Optional[str]] = mapped_column(String(20))
    channel: Mapped[str] = mapped_column(String(50), nullable=False)
    via: Mapped[Optional[str]] = mapped_column(String(50))
    from_agent: Mapped[bool] = mapped_column(Boolean, default=False)
    subject: Mapped[Optional[str]] = mapped_column(Text)
    excerpt: Mapped[Optional[str]] = mapped_column(Text)

    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("gorgias_customers.id"), index=True
    )
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))
    assignee_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("gorgias_users.id"))
    assignee_team_id: Mapped[Optional[int]] = mapped_column(Integer)
    assignee_team_name: Mapped[Optional[str]] = mapped_column(String(100))

    messages_count: Mapped[int] = mapped_column(Integer, default=0)
    is_unread: Mapped[bool] = mapped_column(Boolean, default=False)

    opened_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_received_message_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_message_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    closed_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    snooze_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    trashed_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    spam_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    integrations: Mapped[Optional[list[Any]]] = mapped_column(JSONType)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    shopify_order_id: Mapped[Optional[str]] = mapped_column(String(100))

    gorgias_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    gorgias_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WarehouseTicketTag(Base):
    """Join row; regenerated on every sync of its ticket."""

    __tablename__ = "gorgias_ticket_tags"
    __table_args__ = (UniqueConstraint("ticket_id", "tag_id", name="uq_gorgias_ticket_tags_pair"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("gorgias_tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id: Mapped[int] = mapped_column(
        ForeignKey("gorgias_tags.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class WarehouseMessage(Base):
    __tablename__ = "gorgias_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    ticket_id: Mapped[int] = mapped_column(
        ForeignKey("gorgias_tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    uri: Mapped[Optional[str]] = mapped_column(String(500))
    channel: Mapped[str] = mapped_column(String(50), nullable=False)
    via: Mapped[Optional[str]] = mapped_column(String(50))
    source: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    sender_id: Mapped[Optional[int]] = mapped_column(Integer)
    sender_email: Mapped[Optional[str]] = mapped_column(String(255))
    sender_name: Mapped[Optional[str]] = mapped_column(String(255))
    receiver_id: Mapped[Optional[int]] = mapped_column(Integer)
    receiver_email: Mapped[Optional[str]] = mapped_column(String(255))
    receiver_name: Mapped[Optional[str]] = mapped_column(String(255))
    integration_id: Mapped[Optional[int]] = mapped_column(Integer)
    rule_id: Mapped[Optional[int]] = mapped_column(Integer)
    external_id: Mapped[Optional[str]] = mapped_column(String(255))
    subject: Mapped[Optional[str]] = mapped_column(Text)
    body_text: Mapped[Optional[str]] = mapped_column(Text)
    body_html: Mapped[Optional[str]] = mapped_column(Text)
    stripped_text: Mapped[Optional[str]] = mapped_column(Text)
    stripped_html: Mapped[Optional[str]] = mapped_column(Text)
    stripped_signature: Mapped[Optional[str]] = mapped_column(Text)
    public: Mapped[bool] = mapped_column(Boolean, default=True)
    from_agent: Mapped[bool] = mapped_column(Boolean, default=False)
    is_retriable: Mapped[Optional[bool]] = mapped_column(Boolean)
    failed_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sent_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    opened_datetime: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_sending_error: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    attachments: Mapped[Optional[list[Any]]] = mapped_column(JSONType)
    macros: Mapped[Optional[list[Any]]] = mapped_column(JSONType)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)
    actions: Mapped[Optional[list[Any]]] = mapped_column(JSONType)
    gorgias_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class SyncCursor(Base):
    """Per-entity sync bookkeeping. One row per entity type."""

    __tablename__ = "gorgias_sync_cursors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_synced_id: Mapped[Optional[int]] = mapped_column(Integer)
    cursor: Mapped[Optional[str]] = mapped_column(String(255))
    total_synced: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class SyncLog(Base):
    """One row per phase run."""

    __tablename__ = "gorgias_sync_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    processed_records: Mapped[int] = mapped_column(Integer, default=0)
    failed_records: Mapped[int] = mapped_column(Integer, default=0)
    last_cursor: Mapped[Optional[str]] = mapped_column(String(255))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
