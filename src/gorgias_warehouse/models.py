"""
Pydantic models for Gorgias API responses.

These models give type-safe parsing of Gorgias list/detail payloads and are
the intermediate representation before rows are mapped into the warehouse.
Unknown upstream fields are ignored.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class GorgiasRole(BaseModel):
    """Role attached to a helpdesk user."""

    id: int | None = None
    name: str | None = None


class GorgiasUser(BaseModel):
    """Helpdesk agent (support staff user)."""

    id: int
    email: str
    name: str | None = None
    firstname: str | None = None
    lastname: str | None = None
    role: GorgiasRole | None = None
    active: bool = True
    meta: dict[str, Any] | None = None
    created_datetime: datetime | None = None
    updated_datetime: datetime | None = None

    @field_validator("active", mode="before")
    @classmethod
    def default_active(cls, v: Any) -> bool:
        return True if v is None else v


class UserRef(BaseModel):
    """Reference to a user or team embedded in another record."""

    id: int
    name: str | None = None
    email: str | None = None


class TagDecoration(BaseModel):
    color: str | None = None
    emoji: str | None = None


class GorgiasTag(BaseModel):
    """Ticket tag."""

    id: int
    name: str
    uri: str | None = None
    decoration: TagDecoration | None = None
    created_datetime: datetime | None = None
    updated_datetime: datetime | None = None


class CustomerChannel(BaseModel):
    """Contact method of a customer (email, phone, ...)."""

    id: int | None = None
    type: str
    address: str | None = None
    preferred: bool = False


class GorgiasCustomer(BaseModel):
    """Helpdesk customer."""

    id: int
    external_id: str | None = None
    email: str | None = None
    name: str | None = None
    firstname: str | None = None
    lastname: str | None = None
    language: str | None = None
    timezone: str | None = None
    note: str | None = None
    data: dict[str, Any] | None = None
    channels: list[CustomerChannel] = Field(default_factory=list)
    meta: dict[str, Any] | None = None
    created_datetime: datetime | None = None
    updated_datetime: datetime | None = None

    @field_validator("external_id", mode="before")
    @classmethod
    def stringify_external_id(cls, v: Any) -> str | None:
        """Gorgias returns numeric external ids for some integrations."""
        if v is None or v == "":
            return None
        return str(v)

    @property
    def shopify_customer_id(self) -> str | None:
        if not self.meta:
            return None
        value = self.meta.get("shopify_customer_id")
        return str(value) if value else None

    @property
    def preferred_channel(self) -> CustomerChannel | None:
        """The channel flagged as preferred, if any."""
        for channel in self.channels:
            if channel.preferred:
                return channel
        return None


class GorgiasTicket(BaseModel):
    """Helpdesk ticket, as returned by the tickets list endpoint."""

    id: int
    uri: str | None = None
    external_id: str | None = None
    language: str | None = None
    status: Literal["open", "closed"]
    priority: str | None = None
    channel: str
    via: str | None = None
    from_agent: bool = False
    subject: str | None = None
    excerpt: str | None = None

    # Relationships
    customer: GorgiasCustomer | None = None
    assignee_user: UserRef | None = None
    assignee_team: UserRef | None = None
    tags: list[GorgiasTag] = Field(default_factory=list)

    messages_count: int = 0
    is_unread: bool = False

    # Lifecycle timestamps
    opened_datetime: datetime | None = None
    last_received_message_datetime: datetime | None = None
    last_message_datetime: datetime | None = None
    closed_datetime: datetime | None = None
    snooze_datetime: datetime | None = None
    trashed_datetime: datetime | None = None
    spam_datetime: datetime | None = None

    integrations: list[Any] | None = None
    meta: dict[str, Any] | None = None

    created_datetime: datetime
    updated_datetime: datetime

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> str:
        """Normalize status values ("Open" -> "open")."""
        if v is None:
            return "open"
        return str(v).strip().lower()

    @field_validator("external_id", mode="before")
    @classmethod
    def stringify_external_id(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("messages_count", mode="before")
    @classmethod
    def default_messages_count(cls, v: Any) -> int:
        return 0 if v is None else v

    @field_validator("from_agent", "is_unread", mode="before")
    @classmethod
    def default_flags(cls, v: Any) -> bool:
        return False if v is None else v

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    @property
    def shopify_order_id(self) -> str | None:
        """Foreign order reference stored in the ticket meta."""
        if not self.meta:
            return None
        value = self.meta.get("shopify_order_id")
        return str(value) if value else None


class MessageParty(BaseModel):
    """Sender/receiver identity snapshot on a message."""

    id: int | None = None
    email: str | None = None
    name: str | None = None


class GorgiasMessage(BaseModel):
    """Message on a ticket."""

    id: int
    ticket_id: int
    uri: str | None = None
    channel: str
    via: str | None = None
    source: dict[str, Any] | None = None
    sender: MessageParty | None = None
    receiver: MessageParty | None = None
    integration_id: int | None = None
    rule_id: int | None = None
    external_id: str | None = None
    subject: str | None = None
    body_text: str | None = None
    body_html: str | None = None
    stripped_text: str | None = None
    stripped_html: str | None = None
    stripped_signature: str | None = None
    public: bool = True
    from_agent: bool = False
    is_retriable: bool | None = None
    failed_datetime: datetime | None = None
    sent_datetime: datetime | None = None
    opened_datetime: datetime | None = None
    last_sending_error: dict[str, Any] | None = None
    attachments: list[Any] | None = None
    macros: list[Any] | None = None
    meta: dict[str, Any] | None = None
    actions: list[Any] | None = None
    created_datetime: datetime

    @field_validator("public", mode="before")
    @classmethod
    def default_public(cls, v: Any) -> bool:
        return True if v is None else v

    @field_validator("from_agent", mode="before")
    @classmethod
    def default_from_agent(cls, v: Any) -> bool:
        return False if v is None else v

    @field_validator("external_id", mode="before")
    @classmethod
    def stringify_external_id(cls, v: Any) -> str | None:
        if v is None or v == "":
            return None
        return str(v)


# API Response wrappers


class ListMeta(BaseModel):
    """Cursor pagination metadata."""

    next_cursor: str | None = None
    prev_cursor: str | None = None
    has_more: bool | None = None


class GorgiasListResponse(BaseModel):
    """Envelope of every Gorgias list endpoint: {data: [...], meta: {...}}."""

    data: list[dict[str, Any]] = Field(default_factory=list)
    meta: ListMeta = Field(default_factory=ListMeta)

    @field_validator("data", mode="before")
    @classmethod
    def default_data(cls, v: Any) -> list:
        return [] if v is None else v

    @field_validator("meta", mode="before")
    @classmethod
    def default_meta(cls, v: Any) -> Any:
        return {} if v is None else v
