"""
Gorgias -> warehouse sync orchestrator.

Runs the five entity phases strictly in foreign-key order:

    Idle -> Users -> Tags -> Customers -> Tickets -> Messages -> Done
                     (any phase) -> Error

Each phase drains its endpoint, writes through the batch writers, records
a cursor row and returns a SyncResult. Batches already committed by a
failing phase stay committed; re-running the phase re-upserts them.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

import structlog
from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError

from gorgias_warehouse.client import GorgiasClient, MAX_PAGE_SIZE
from gorgias_warehouse.schema import WarehouseTicket
from gorgias_warehouse.state import SyncCursorStore, as_utc
from gorgias_warehouse.writers import (
    write_customers,
    write_messages,
    write_tags,
    write_tickets,
    write_users,
)

logger = structlog.get_logger(__name__)

WAREHOUSE_UNAVAILABLE = "Warehouse database is not configured"

# Messages phase reports progress every N tickets
MESSAGES_PROGRESS_EVERY = 50


class SyncState(str, Enum):
    IDLE = "idle"
    USERS = "users"
    TAGS = "tags"
    CUSTOMERS = "customers"
    TICKETS = "tickets"
    MESSAGES = "messages"
    DONE = "done"
    ERROR = "error"


PHASE_ORDER: tuple[str, ...] = ("users", "tags", "customers", "tickets", "messages")


@dataclass
class SyncProgress:
    """Progress event handed to the caller's callback."""
    entity_type: str
    phase: str
    processed: int
    failed: int = 0
    percentage: float | None = None  # None when the total is unknown
    current_batch: int = 0
    total_batches: int | None = None


@dataclass
class SyncResult:
    """Terminal result of one phase."""
    success: bool
    entity_type: str
    total_records: int = 0
    failed_records: int = 0
    duration: float = 0.0  # seconds
    error: str | None = None
    processed_items: int = 0
    failed_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[SyncProgress], None]


@dataclass
class _PhaseCounters:
    """Mutable tallies a phase body fills in as batches commit."""
    total: int = 0
    failed: int = 0
    processed_items: int = 0
    failed_ids: list[int] = field(default_factory=list)
    cursor: str | None = None
    last_id: int | None = None
    # Records counted by earlier runs that this incremental run builds on
    carried: int = 0


class WarehouseSync:
    """
    Mirrors a Gorgias account into the warehouse.

    Example:
        client = GorgiasClient(domain="yourshop", email="...", api_key="...")
        engine = create_warehouse_engine(os.environ["DATABASE_URL"])

        sync = WarehouseSync(client, engine, on_progress=print)
        with client:
            for result in sync.full_sync():
                print(result.entity_type, result.success, result.total_records)
    """

    def __init__(
        self,
        client: GorgiasClient | None,
        engine: Engine | None,
        batch_size: int = 100,
        concurrency: int = 1,
        incremental: bool = False,
        stop_on_error: bool = False,
        on_progress: ProgressCallback | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Gorgias API client (None = upstream not configured)
            engine: Warehouse engine (None = store not configured)
            batch_size: Page size requested from list endpoints (max 100)
            concurrency: Worker threads for the messages phase; all share
                the client's rate limiter
            incremental: Only pull records updated since the last cursor
            stop_on_error: Stop a full sync at the first failed phase
            on_progress: Callback receiving SyncProgress events
        """
        self.client = client
        self.engine = engine
        self.batch_size = max(1, min(batch_size, MAX_PAGE_SIZE))
        self.concurrency = max(1, concurrency)
        self.incremental = incremental
        self.stop_on_error = stop_on_error
        self.on_progress = on_progress

        self.cursors = SyncCursorStore(engine)
        self.state = SyncState.IDLE

        self._log = logger.bind(domain=getattr(client, "domain", None))

    @property
    def is_available(self) -> bool:
        return self.client is not None and self.engine is not None

    @property
    def sync_type(self) -> str:
        return "incremental" if self.incremental else "full"

    def _emit(self, progress: SyncProgress) -> None:
        if self.on_progress:
            self.on_progress(progress)

    # -------------------------------------------------------------------------
    # Phase runner
    # -------------------------------------------------------------------------

    def _run_phase(
        self,
        entity_type: str,
        body: Callable[[_PhaseCounters], None],
        sync_type: str | None = None,
        record_cursor: bool = True,
    ) -> SyncResult:
        if not self.is_available:
            return SyncResult(success=False, entity_type=entity_type, error=WAREHOUSE_UNAVAILABLE)

        if entity_type in PHASE_ORDER:
            self.state = SyncState(entity_type)

        log = self._log.bind(entity_type=entity_type)
        started = time.monotonic()
        phase_started_at = datetime.now(timezone.utc)
        counters = _PhaseCounters()
        log_id = None

        log.info("Phase started", sync_type=sync_type or self.sync_type)

        try:
            log_id = self.cursors.start_log(sync_type or self.sync_type, entity_type)
            body(counters)
            if record_cursor:
                self.cursors.record_progress(
                    entity_type,
                    counters.carried + counters.total,
                    last_synced_id=counters.last_id,
                    cursor=counters.cursor,
                    synced_at=phase_started_at,
                )
        except Exception as e:
            duration = time.monotonic() - started
            log.error("Phase failed", error=str(e), records=counters.total, duration=round(duration, 2))
            self._close_log(log_id, False, counters, error=str(e))
            self.state = SyncState.ERROR
            return SyncResult(
                success=False,
                entity_type=entity_type,
                total_records=counters.total,
                failed_records=counters.failed,
                duration=duration,
                error=str(e),
                processed_items=counters.processed_items,
                failed_ids=counters.failed_ids,
            )

        duration = time.monotonic() - started
        self._close_log(log_id, True, counters)
        log.info(
            "Phase complete",
            records=counters.total,
            failed=counters.failed,
            duration=round(duration, 2),
        )
        return SyncResult(
            success=True,
            entity_type=entity_type,
            total_records=counters.total,
            failed_records=counters.failed,
            duration=duration,
            processed_items=counters.processed_items,
            failed_ids=counters.failed_ids,
        )

    def _close_log(
        self,
        log_id: str | None,
        success: bool,
        counters: _PhaseCounters,
        error: str | None = None,
    ) -> None:
        try:
            self.cursors.finish_log(
                log_id,
                success,
                processed=counters.total,
                failed=counters.failed,
                last_cursor=counters.cursor,
                error=error,
            )
        except SQLAlchemyError as e:
            self._log.warning("Failed to close sync log", log_id=log_id, error=str(e))

    def _since(self, entity_type: str, counters: _PhaseCounters) -> datetime | None:
        """
        Lower bound for incremental pulls, None for a full rescan.

        An incremental run carries the previous cursor total forward so the
        stored count stays cumulative.
        """
        if not self.incremental:
            return None
        cursor = self.cursors.get_cursor(entity_type)
        if cursor is None:
            return None
        counters.carried = cursor.total_synced
        return cursor.last_synced_at

    # -------------------------------------------------------------------------
    # Collect-all phases (bounded volume)
    # -------------------------------------------------------------------------

    def sync_users(self) -> SyncResult:
        """Fetch every agent into memory, then upsert."""
        def body(counters: _PhaseCounters) -> None:
            users = self.client.list_users(limit=self.batch_size)
            counters.total = write_users(self.engine, users)
            counters.last_id = users[-1].id if users else None
            self._emit(SyncProgress("users", "syncing", counters.total, percentage=100.0))

        return self._run_phase("users", body)

    def sync_tags(self) -> SyncResult:
        def body(counters: _PhaseCounters) -> None:
            tags = self.client.list_tags(limit=self.batch_size)
            counters.total = write_tags(self.engine, tags)
            counters.last_id = tags[-1].id if tags else None
            self._emit(SyncProgress("tags", "syncing", counters.total, percentage=100.0))

        return self._run_phase("tags", body)

    # -------------------------------------------------------------------------
    # Streamed phases (written page by page)
    # -------------------------------------------------------------------------

    def _stream_pages(
        self,
        entity_type: str,
        pages: Iterable,
        write: Callable[[Engine | None, Sequence], int],
        counters: _PhaseCounters,
        since: datetime | None,
    ) -> None:
        for page in pages:
            items = page.items
            fresh = items
            if since is not None:
                fresh = [
                    r for r in items
                    if r.updated_datetime is None or as_utc(r.updated_datetime) >= since
                ]

            counters.total += write(self.engine, fresh)
            counters.cursor = page.next_cursor
            if fresh:
                counters.last_id = fresh[-1].id

            self._emit(SyncProgress(
                entity_type,
                "syncing",
                counters.total,
                current_batch=page.number,
            ))

            # Pages are newest-first in incremental mode; the rest is older
            if since is not None and len(fresh) < len(items):
                self._log.info("Reached last synced record", entity_type=entity_type, page=page.number)
                break

    def sync_customers(self) -> SyncResult:
        def body(counters: _PhaseCounters) -> None:
            since = self._since("customers", counters)
            pages = self.client.iter_customer_pages(
                limit=self.batch_size,
                order_by="updated_datetime:desc" if since else None,
            )
            self._stream_pages("customers", pages, write_customers, counters, since)

        return self._run_phase("customers", body)

    def sync_tickets(self) -> SyncResult:
        """Tickets also upsert their embedded customer and replace their tag set."""
        def body(counters: _PhaseCounters) -> None:
            since = self._since("tickets", counters)
            pages = self.client.iter_ticket_pages(
                limit=self.batch_size,
                order_by="updated_datetime:desc" if since else "created_datetime:asc",
            )
            self._stream_pages("tickets", pages, write_tickets, counters, since)

        return self._run_phase("tickets", body)

    # -------------------------------------------------------------------------
    # Messages (per ticket, failures isolated)
    # -------------------------------------------------------------------------

    def _known_ticket_ids(self, since: datetime | None = None) -> list[int]:
        stmt = select(WarehouseTicket.id).order_by(WarehouseTicket.id)
        if since is not None:
            stmt = stmt.where(WarehouseTicket.gorgias_updated_at >= since)
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).scalars())

    def _sync_ticket_messages(self, ticket_id: int) -> int:
        written = 0
        for page in self.client.iter_ticket_message_pages(ticket_id, limit=MAX_PAGE_SIZE):
            written += write_messages(self.engine, page.items)
        return written

    def sync_messages(self) -> SyncResult:
        """
        Fetch and upsert messages ticket by ticket.

        A ticket whose messages cannot be fetched or written is counted in
        `failed_records` and skipped; the phase carries on with the rest.
        """
        def body(counters: _PhaseCounters) -> None:
            ticket_ids = self._known_ticket_ids(self._since("messages", counters))
            total_tickets = len(ticket_ids)
            self._log.info("Syncing messages", tickets=total_tickets, concurrency=self.concurrency)

            def record(ticket_id: int, written: int | None, error: Exception | None) -> None:
                counters.processed_items += 1
                if error is not None:
                    counters.failed += 1
                    counters.failed_ids.append(ticket_id)
                    self._log.warning("Ticket messages failed", ticket_id=ticket_id, error=str(error))
                else:
                    counters.total += written or 0
                    counters.last_id = ticket_id

                done = counters.processed_items
                if done % MESSAGES_PROGRESS_EVERY == 0 or done == total_tickets:
                    self._emit(SyncProgress(
                        "messages",
                        "syncing",
                        counters.total,
                        failed=counters.failed,
                        percentage=round(done / total_tickets * 100, 1),
                        current_batch=done,
                        total_batches=total_tickets,
                    ))

            if self.concurrency == 1:
                for ticket_id in ticket_ids:
                    try:
                        written = self._sync_ticket_messages(ticket_id)
                    except Exception as e:
                        record(ticket_id, None, e)
                    else:
                        record(ticket_id, written, None)
            else:
                # Workers share the client's rate limiter; tallies stay on this thread
                with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                    futures = {
                        pool.submit(self._sync_ticket_messages, ticket_id): ticket_id
                        for ticket_id in ticket_ids
                    }
                    for future in as_completed(futures):
                        ticket_id = futures[future]
                        error = future.exception()
                        record(ticket_id, None if error else future.result(), error)

            counters.failed_ids.sort()

        return self._run_phase("messages", body)

    # -------------------------------------------------------------------------
    # Single ticket (webhook trigger)
    # -------------------------------------------------------------------------

    def sync_ticket(self, ticket_id: int) -> SyncResult:
        """
        Refresh one ticket and all of its messages.

        Used by the webhook receiver when the helpdesk reports a ticket
        change; does not move the per-entity cursors.
        """
        def body(counters: _PhaseCounters) -> None:
            ticket = self.client.get_ticket(ticket_id)
            write_tickets(self.engine, [ticket])
            counters.total = self._sync_ticket_messages(ticket_id)
            counters.processed_items = 1
            counters.last_id = ticket_id

        return self._run_phase("ticket", body, sync_type="webhook", record_cursor=False)

    # -------------------------------------------------------------------------
    # Full run
    # -------------------------------------------------------------------------

    def sync_phase(self, entity_type: str) -> SyncResult:
        """Run one phase by entity type name."""
        phases: dict[str, Callable[[], SyncResult]] = {
            "users": self.sync_users,
            "tags": self.sync_tags,
            "customers": self.sync_customers,
            "tickets": self.sync_tickets,
            "messages": self.sync_messages,
        }
        if entity_type not in phases:
            raise ValueError(f"Unknown entity type '{entity_type}'")
        return phases[entity_type]()

    def full_sync(self) -> list[SyncResult]:
        """
        Run every phase in dependency order.

        A failed phase does not stop the run unless `stop_on_error` is set.
        Final state is DONE when every phase succeeded, ERROR otherwise.
        """
        results: list[SyncResult] = []
        self._log.info("Full sync started", sync_type=self.sync_type)

        for entity_type in PHASE_ORDER:
            result = self.sync_phase(entity_type)
            results.append(result)
            if not result.success and self.stop_on_error:
                self._log.warning("Stopping after failed phase", entity_type=entity_type)
                break

        self.state = SyncState.DONE if all(r.success for r in results) else SyncState.ERROR
        self._log.info(
            "Full sync finished",
            state=self.state.value,
            records=sum(r.total_records for r in results),
        )
        return results

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "state": self.state.value,
            "available": self.is_available,
            "sync_status": [s.to_dict() for s in self.cursors.get_status()],
        }
        if self.client is not None:
            stats["client"] = self.client.get_stats()
        return stats
