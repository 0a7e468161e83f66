"""
Tests for the warehouse query functions.
"""

import pytest
from sqlalchemy import select

from gorgias_warehouse.models import GorgiasMessage, GorgiasTicket
from gorgias_warehouse.queries import (
    get_channel_breakdown,
    get_sync_status,
    get_ticket,
    get_tickets_by_customer_email,
    get_warehouse_stats,
    recent_sync_logs,
    refresh_customer_ticket_counts,
)
from gorgias_warehouse.schema import WarehouseCustomer
from gorgias_warehouse.state import SyncCursorStore
from gorgias_warehouse.writers import write_messages, write_tickets


@pytest.fixture
def populated(engine, make_ticket, make_message):
    tickets = [
        make_ticket(1, customer_id=555, tags=[2, 1], channel="email", created="2024-01-01T00:00:00Z"),
        make_ticket(2, customer_id=555, status="closed", channel="chat", created="2024-02-01T00:00:00Z"),
        make_ticket(3, customer_id=556, channel="email", created="2024-03-01T00:00:00Z"),
    ]
    write_tickets(engine, [GorgiasTicket.model_validate(t) for t in tickets])
    write_messages(engine, [
        GorgiasMessage.model_validate(make_message(11, 1, created="2024-01-01T10:00:00Z")),
        GorgiasMessage.model_validate(make_message(10, 1, created="2024-01-01T09:00:00Z")),
    ])
    return engine


class TestWarehouseStats:
    def test_stats(self, populated):
        stats = get_warehouse_stats(populated)

        assert stats == {
            "total_tickets": 3,
            "open_tickets": 2,
            "closed_tickets": 1,
            "total_customers": 2,
            "total_messages": 2,
            "total_users": 0,
            "total_tags": 2,
        }

    def test_channel_breakdown(self, populated):
        assert get_channel_breakdown(populated) == {"email": 2, "chat": 1}


class TestTicketLookup:
    def test_get_ticket_with_tags_and_messages(self, populated):
        ticket = get_ticket(populated, 1)

        assert ticket["id"] == 1
        assert ticket["tags"] == ["tag-1", "tag-2"]
        assert [m["id"] for m in ticket["messages"]] == [10, 11]

    def test_missing_ticket(self, populated):
        assert get_ticket(populated, 999) is None

    def test_tickets_by_customer_email(self, populated):
        tickets = get_tickets_by_customer_email(populated, "Customer555@Example.com")

        assert [t["id"] for t in tickets] == [2, 1]

    def test_tickets_by_customer_email_limit(self, populated):
        tickets = get_tickets_by_customer_email(populated, "customer555@example.com", limit=1)

        assert [t["id"] for t in tickets] == [2]


class TestCustomerTicketCounts:
    def test_refresh_counts(self, populated):
        updated = refresh_customer_ticket_counts(populated)

        assert updated == 2
        with populated.connect() as conn:
            rows = conn.execute(
                select(
                    WarehouseCustomer.id,
                    WarehouseCustomer.ticket_count,
                    WarehouseCustomer.open_ticket_count,
                ).order_by(WarehouseCustomer.id)
            ).all()
        assert [tuple(r) for r in rows] == [(555, 2, 1), (556, 1, 1)]


class TestSyncStatus:
    def test_sync_status_and_logs(self, engine):
        store = SyncCursorStore(engine)
        store.record_progress("tickets", total_synced=3)
        store.finish_log(store.start_log("full", "tickets"), True, processed=3)

        status = get_sync_status(engine)
        assert status[0]["entity_type"] == "tickets"
        assert status[0]["total_synced"] == 3

        logs = recent_sync_logs(engine)
        assert logs[0]["status"] == "completed"


class TestWarehouseUnavailable:
    """Every query degrades to an empty result without a store."""

    def test_empty_results(self):
        assert get_warehouse_stats(None)["total_tickets"] == 0
        assert get_channel_breakdown(None) == {}
        assert get_ticket(None, 1) is None
        assert get_tickets_by_customer_email(None, "a@b.com") == []
        assert get_sync_status(None) == []
        assert recent_sync_logs(None) == []
        assert refresh_customer_ticket_counts(None) == 0
