"""
Sync bookkeeping.

One cursor row per entity type (last write wins) plus a log row per phase
run. This is the engine's own state, not mirrored data. Without a
configured store every call is a no-op.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Engine, delete, select, update

from gorgias_warehouse.rows import upsert_rows
from gorgias_warehouse.schema import SyncCursor, SyncLog

logger = structlog.get_logger(__name__)


@dataclass
class SyncStatus:
    """Last recorded progress for one entity type."""
    entity_type: str
    last_synced_at: datetime | None
    total_synced: int = 0
    last_synced_id: int | None = None
    cursor: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_synced_at"] = self.last_synced_at.isoformat() if self.last_synced_at else None
        return data


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SyncCursorStore:
    """
    Persists per-entity sync progress in the warehouse.

    Usage:
        store = SyncCursorStore(engine)
        store.record_progress("tickets", total_synced=1200)

        for row in store.get_status():
            print(row.entity_type, row.last_synced_at, row.total_synced)
    """

    def __init__(self, engine: Engine | None):
        self.engine = engine
        self._log = logger.bind(component="sync_cursor_store")

    @property
    def is_available(self) -> bool:
        return self.engine is not None

    # -------------------------------------------------------------------------
    # Cursors
    # -------------------------------------------------------------------------

    def record_progress(
        self,
        entity_type: str,
        total_synced: int,
        last_synced_id: int | None = None,
        cursor: str | None = None,
        synced_at: datetime | None = None,
    ) -> None:
        """Upsert the cursor row for `entity_type` with the current time."""
        if self.engine is None:
            return

        now = synced_at or datetime.now(timezone.utc)
        row = {
            "entity_type": entity_type,
            "last_synced_at": now,
            "last_synced_id": last_synced_id,
            "cursor": cursor,
            "total_synced": total_synced,
            "updated_at": now,
        }
        with self.engine.begin() as conn:
            upsert_rows(conn, SyncCursor.__table__, [row], conflict_key=("entity_type",))

        self._log.debug("Recorded sync progress", entity_type=entity_type, total_synced=total_synced)

    def get_cursor(self, entity_type: str) -> SyncStatus | None:
        """Cursor row for one entity type, or None if it never synced."""
        if self.engine is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                select(SyncCursor.__table__).where(SyncCursor.entity_type == entity_type)
            ).mappings().first()
        return self._to_status(row) if row else None

    def get_status(self) -> list[SyncStatus]:
        """All cursor rows, ordered by entity type."""
        if self.engine is None:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(SyncCursor.__table__).order_by(SyncCursor.entity_type)
            ).mappings().all()
        return [self._to_status(row) for row in rows]

    def clear(self, entity_type: str | None = None) -> None:
        """Delete cursor rows (all of them, or one entity type)."""
        if self.engine is None:
            return
        stmt = delete(SyncCursor)
        if entity_type:
            stmt = stmt.where(SyncCursor.entity_type == entity_type)
        with self.engine.begin() as conn:
            conn.execute(stmt)
        self._log.info("Cleared sync cursors", entity_type=entity_type or "all")

    @staticmethod
    def _to_status(row: Any) -> SyncStatus:
        return SyncStatus(
            entity_type=row["entity_type"],
            last_synced_at=as_utc(row["last_synced_at"]),
            total_synced=row["total_synced"] or 0,
            last_synced_id=row["last_synced_id"],
            cursor=row["cursor"],
        )

    # -------------------------------------------------------------------------
    # Sync logs
    # -------------------------------------------------------------------------

    def start_log(self, sync_type: str, entity_type: str) -> str | None:
        """Open a `running` log row for a phase. Returns its id."""
        if self.engine is None:
            return None
        with self.engine.begin() as conn:
            result = conn.execute(
                SyncLog.__table__.insert().values(
                    sync_type=sync_type,
                    entity_type=entity_type,
                    status="running",
                    started_at=datetime.now(timezone.utc),
                )
            )
            return result.inserted_primary_key[0]

    def finish_log(
        self,
        log_id: str | None,
        success: bool,
        processed: int = 0,
        failed: int = 0,
        last_cursor: str | None = None,
        error: str | None = None,
    ) -> None:
        if self.engine is None or log_id is None:
            return
        with self.engine.begin() as conn:
            conn.execute(
                update(SyncLog)
                .where(SyncLog.id == log_id)
                .values(
                    status="completed" if success else "failed",
                    processed_records=processed,
                    failed_records=failed,
                    last_cursor=last_cursor,
                    error_message=error,
                    completed_at=datetime.now(timezone.utc),
                )
            )

    def recent_logs(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent phase runs, newest first."""
        if self.engine is None:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(SyncLog.__table__).order_by(SyncLog.started_at.desc()).limit(limit)
            ).mappings().all()
        return [dict(row) for row in rows]
