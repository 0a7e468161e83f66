"""
Gorgias Warehouse Sync

Mirrors a Gorgias helpdesk account (agents, tags, customers, tickets and
messages) into a relational warehouse so support history can be queried
without calling the Gorgias API.

Features:
- Dependency-ordered multi-phase sync with per-phase results
- Token bucket rate limiting shared by every API call
- Retry with separate throttling/transient backoff
- Idempotent batch upserts and ticket-tag reconciliation
- Sync cursors, sync logs and optional incremental mode

Quick Start:
    pip install gorgias-warehouse
    export GORGIAS_DOMAIN=yourshop GORGIAS_EMAIL=... GORGIAS_API_KEY=...
    export DATABASE_URL=postgresql://...
    gorgias-warehouse test    # Verify connections
    gorgias-warehouse full    # Run full sync
"""

from gorgias_warehouse.sync import SyncProgress, SyncResult, SyncState, WarehouseSync
from gorgias_warehouse.client import (
    GorgiasClient,
    GorgiasAPIError,
    GorgiasAuthError,
    GorgiasNotConfiguredError,
    GorgiasNotFoundError,
    GorgiasRateLimitError,
    GorgiasServerError,
    fetch_with_retry,
)
from gorgias_warehouse.models import (
    GorgiasUser,
    GorgiasTag,
    GorgiasCustomer,
    GorgiasTicket,
    GorgiasMessage,
)
from gorgias_warehouse.database import create_warehouse_engine, init_schema
from gorgias_warehouse.state import SyncCursorStore, SyncStatus
from gorgias_warehouse.rate_limiter import TokenBucketRateLimiter

__version__ = "1.0.0"
__all__ = [
    # Orchestrator
    "WarehouseSync",
    "SyncProgress",
    "SyncResult",
    "SyncState",

    # API client
    "GorgiasClient",
    "GorgiasAPIError",
    "GorgiasAuthError",
    "GorgiasNotConfiguredError",
    "GorgiasNotFoundError",
    "GorgiasRateLimitError",
    "GorgiasServerError",
    "fetch_with_retry",

    # Models
    "GorgiasUser",
    "GorgiasTag",
    "GorgiasCustomer",
    "GorgiasTicket",
    "GorgiasMessage",

    # Warehouse
    "create_warehouse_engine",
    "init_schema",

    # Sync state
    "SyncCursorStore",
    "SyncStatus",

    # Rate limiting
    "TokenBucketRateLimiter",
]
