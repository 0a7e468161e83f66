"""
Pytest configuration and fixtures for Gorgias warehouse tests.
"""

import copy
from typing import Any, Callable

import httpx
import pytest

from gorgias_warehouse.client import GorgiasClient
from gorgias_warehouse.database import create_warehouse_engine, init_schema


@pytest.fixture
def sample_user_data():
    """Sample agent from the Gorgias API."""
    return {
        "id": 101,
        "email": "alex@acme-shop.com",
        "name": "Alex Agent",
        "firstname": "Alex",
        "lastname": "Agent",
        "role": {"id": 3, "name": "agent"},
        "active": True,
        "meta": {"signature": "Alex @ Acme"},
        "created_datetime": "2023-01-10T08:00:00Z",
        "updated_datetime": "2024-01-02T09:30:00Z",
    }


@pytest.fixture
def sample_tag_data():
    """Sample tag from the Gorgias API."""
    return {
        "id": 7,
        "name": "refund",
        "uri": "/api/tags/7/",
        "decoration": {"color": "#ff0000", "emoji": None},
        "created_datetime": "2023-03-01T12:00:00Z",
        "updated_datetime": None,
    }


@pytest.fixture
def sample_customer_data():
    """Sample customer from the Gorgias API."""
    return {
        "id": 555,
        "external_id": 987654321,
        "email": "jane.doe@example.com",
        "name": "Jane Doe",
        "firstname": "Jane",
        "lastname": "Doe",
        "language": "en",
        "timezone": "Europe/Paris",
        "note": "VIP - ships to EU",
        "data": {"lifetime_value": 1250},
        "channels": [
            {"id": 1, "type": "email", "address": "jane.doe@example.com", "preferred": True},
            {"id": 2, "type": "phone", "address": "+33100000000", "preferred": False},
        ],
        "meta": {"shopify_customer_id": 4455667788},
        "created_datetime": "2023-06-01T09:00:00Z",
        "updated_datetime": "2024-01-10T11:30:00Z",
    }


@pytest.fixture
def sample_ticket_data():
    """Sample ticket with an embedded customer and tags."""
    return {
        "id": 9001,
        "uri": "/api/tickets/9001/",
        "external_id": None,
        "language": "en",
        "status": "Open",
        "priority": "high",
        "channel": "email",
        "via": "email",
        "from_agent": False,
        "subject": "Where is my order?",
        "excerpt": "Hi, I ordered two weeks ago and...",
        "customer": {
            "id": 555,
            "email": "jane.doe@example.com",
            "name": "Jane Doe",
            "firstname": "Jane",
            "lastname": "Doe",
        },
        "assignee_user": {"id": 101, "name": "Alex Agent", "email": "alex@acme-shop.com"},
        "assignee_team": {"id": 12, "name": "Tier 1"},
        "tags": [
            {"id": 7, "name": "refund"},
            {"id": 8, "name": "shipping"},
        ],
        "messages_count": 2,
        "is_unread": True,
        "opened_datetime": "2024-01-15T10:31:00Z",
        "last_message_datetime": "2024-01-16T14:20:00Z",
        "closed_datetime": None,
        "meta": {"shopify_order_id": 112233},
        "created_datetime": "2024-01-15T10:30:00Z",
        "updated_datetime": "2024-01-16T14:20:00Z",
    }


@pytest.fixture
def sample_message_data():
    """Sample ticket message."""
    return {
        "id": 70001,
        "ticket_id": 9001,
        "uri": "/api/tickets/9001/messages/70001/",
        "channel": "email",
        "via": "email",
        "source": {"type": "email", "from": {"address": "jane.doe@example.com"}},
        "sender": {"id": 555, "email": "jane.doe@example.com", "name": "Jane Doe"},
        "receiver": {"id": 101, "email": "support@acme-shop.com", "name": "Acme Support"},
        "external_id": 123,
        "subject": "Where is my order?",
        "body_text": "Hi, I ordered two weeks ago and nothing arrived.\n\n> quoted",
        "body_html": "<p>Hi, I ordered two weeks ago and nothing arrived.</p>",
        "stripped_text": "Hi, I ordered two weeks ago and nothing arrived.",
        "public": None,
        "from_agent": None,
        "attachments": [],
        "macros": None,
        "created_datetime": "2024-01-15T10:30:00Z",
    }


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_ticket(sample_ticket_data) -> Callable[..., dict[str, Any]]:
    """Build ticket payloads with a given id, customer and tag ids."""

    def factory(
        ticket_id: int,
        customer_id: int | None = 555,
        tags: list[int] | None = None,
        status: str = "open",
        channel: str = "email",
        assignee_id: int | None = None,
        created: str = "2024-01-15T10:30:00Z",
        updated: str = "2024-01-16T14:20:00Z",
    ) -> dict[str, Any]:
        data = copy.deepcopy(sample_ticket_data)
        data.update(
            id=ticket_id,
            uri=f"/api/tickets/{ticket_id}/",
            status=status,
            channel=channel,
            created_datetime=created,
            updated_datetime=updated,
            tags=[{"id": tag_id, "name": f"tag-{tag_id}"} for tag_id in (tags or [])],
            assignee_user={"id": assignee_id, "name": "Alex Agent"} if assignee_id else None,
        )
        if customer_id is None:
            data["customer"] = None
        else:
            data["customer"] = {
                "id": customer_id,
                "email": f"customer{customer_id}@example.com",
                "name": f"Customer {customer_id}",
            }
        return data

    return factory


@pytest.fixture
def make_message(sample_message_data) -> Callable[..., dict[str, Any]]:
    def factory(message_id: int, ticket_id: int, created: str = "2024-01-15T10:30:00Z") -> dict[str, Any]:
        data = copy.deepcopy(sample_message_data)
        data.update(id=message_id, ticket_id=ticket_id, created_datetime=created)
        return data

    return factory


# ---------------------------------------------------------------------------
# Fake Gorgias API
# ---------------------------------------------------------------------------

class FakeGorgiasAPI:
    """
    In-memory stand-in for the Gorgias REST API, served via httpx.MockTransport.

    List endpoints paginate with offset cursors ("0", "2", ...) and honor
    `limit` and `order_by=updated_datetime:desc`.
    """

    def __init__(self):
        self.lists: dict[str, list[dict[str, Any]]] = {}
        self.objects: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, list[int]] = {}
        self.always_fail: dict[str, int] = {}
        self.fail_after_n: dict[str, tuple[int, int]] = {}
        self.requests: list[httpx.Request] = []

    def add_list(self, path: str, records: list[dict[str, Any]]) -> None:
        self.lists[path] = records

    def add_object(self, path: str, payload: dict[str, Any]) -> None:
        self.objects[path] = payload

    def fail(self, path: str, *statuses: int) -> None:
        """Answer the next requests to `path` with these statuses, in order."""
        self.failures.setdefault(path, []).extend(statuses)

    def fail_always(self, path: str, status: int = 500) -> None:
        self.always_fail[path] = status

    def fail_after(self, path: str, successes: int, status: int = 500) -> None:
        """Serve `successes` requests to `path` normally, then fail every later one."""
        self.fail_after_n[path] = (successes, status)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if self._path(r) == path]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/api")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)

        if path in self.always_fail:
            return httpx.Response(self.always_fail[path], json={"error": "boom"})

        if path in self.fail_after_n:
            successes, status = self.fail_after_n[path]
            if len(self.calls(path)) > successes:
                return httpx.Response(status, json={"error": "boom"})

        pending = self.failures.get(path)
        if pending:
            return httpx.Response(pending.pop(0), json={"message": "injected failure"})

        if path in self.objects:
            return httpx.Response(200, json=self.objects[path])

        if path in self.lists:
            return httpx.Response(200, json=self._page(request, self.lists[path]))

        return httpx.Response(404, json={"message": "Not found"})

    @staticmethod
    def _page(request: httpx.Request, records: list[dict[str, Any]]) -> dict[str, Any]:
        params = request.url.params
        limit = int(params.get("limit", 100))
        offset = int(params.get("cursor") or 0)

        if params.get("order_by") == "updated_datetime:desc":
            records = sorted(records, key=lambda r: r.get("updated_datetime") or "", reverse=True)

        data = records[offset:offset + limit]
        next_offset = offset + limit
        next_cursor = str(next_offset) if next_offset < len(records) else None
        return {"data": data, "meta": {"next_cursor": next_cursor, "prev_cursor": None}}


@pytest.fixture
def fake_api():
    return FakeGorgiasAPI()


@pytest.fixture
def sleeps():
    """Records every retry sleep instead of waiting."""
    return []


@pytest.fixture
def client(fake_api, sleeps):
    """GorgiasClient wired to the fake API, with no real waiting."""
    gorgias = GorgiasClient(
        domain="acme-shop",
        email="alex@acme-shop.com",
        api_key="test-api-key-123",
        requests_per_second=1000,
        transport=httpx.MockTransport(fake_api.handler),
        sleep=sleeps.append,
    )
    yield gorgias
    gorgias.close()


# ---------------------------------------------------------------------------
# Warehouse
# ---------------------------------------------------------------------------

@pytest.fixture
def engine(tmp_path):
    """SQLite warehouse with the schema created."""
    warehouse = create_warehouse_engine(f"sqlite:///{tmp_path / 'warehouse.db'}")
    init_schema(warehouse)
    yield warehouse
    warehouse.dispose()
