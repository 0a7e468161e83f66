#!/usr/bin/env python3
"""
Gorgias Warehouse CLI

Operational entry point for the Gorgias -> warehouse sync.

Usage:
    gorgias-warehouse full                 # Sync every entity type in order
    gorgias-warehouse tickets --batch 50   # Sync a single phase
    gorgias-warehouse messages --concurrency 5
    gorgias-warehouse ticket 12345         # Refresh one ticket and its messages
    gorgias-warehouse status               # Show warehouse and sync status
    gorgias-warehouse test                 # Test API and database connections
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

from colorama import Fore, Style, init
from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from gorgias_warehouse.client import GorgiasClient
from gorgias_warehouse.database import create_warehouse_engine, init_schema
from gorgias_warehouse.queries import (
    get_channel_breakdown,
    get_warehouse_stats,
    recent_sync_logs,
    refresh_customer_ticket_counts,
)
from gorgias_warehouse.state import SyncCursorStore
from gorgias_warehouse.sync import PHASE_ORDER, SyncProgress, SyncResult, WarehouseSync

init()
GREEN = Fore.GREEN
RED = Fore.RED
YELLOW = Fore.YELLOW
BLUE = Fore.CYAN
RESET = Style.RESET_ALL
BOLD = Style.BRIGHT

PROGRESS_BAR_WIDTH = 30


def print_banner():
    """Print the banner."""
    print(f"""
{BLUE}╔══════════════════════════════════════════════════════════════╗
║     {BOLD}Gorgias → Warehouse Sync{RESET}{BLUE}                                 ║
║     Support history mirrored into your own database          ║
╚══════════════════════════════════════════════════════════════╝{RESET}
""")


def print_success(msg: str):
    print(f"{GREEN}✓ {msg}{RESET}")


def print_error(msg: str):
    print(f"{RED}✗ {msg}{RESET}")


def print_warning(msg: str):
    print(f"{YELLOW}⚠ {msg}{RESET}")


def print_info(msg: str):
    print(f"{BLUE}ℹ {msg}{RESET}")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def get_config_path() -> Path:
    """Get the configuration file path."""
    return Path.home() / ".gorgias-warehouse" / "config.json"


ENV_MAPPINGS = {
    "domain": "GORGIAS_DOMAIN",
    "email": "GORGIAS_EMAIL",
    "api_key": "GORGIAS_API_KEY",
    "database_url": "DATABASE_URL",
    "requests_per_second": "GORGIAS_REQUESTS_PER_SECOND",
}


def load_config() -> dict:
    """
    Load configuration from file, with environment variable overrides.

    Priority:
    1. Environment variables (when set)
    2. Config file values
    """
    config = {}

    config_path = get_config_path()
    if config_path.exists():
        with open(config_path) as f:
            config = json.load(f)

    for config_key, env_var in ENV_MAPPINGS.items():
        env_value = os.environ.get(env_var)
        if env_value is not None:
            config[config_key] = env_value

    if config.get("requests_per_second") is not None:
        config["requests_per_second"] = float(config["requests_per_second"])

    return config


def is_api_configured(config: dict) -> bool:
    return bool(config.get("domain") and config.get("email") and config.get("api_key"))


def print_not_configured() -> None:
    print_error("Gorgias API not configured.")
    print_info("Set environment variables:")
    print("    export GORGIAS_DOMAIN=yourshop")
    print("    export GORGIAS_EMAIL=agent@yourshop.com")
    print("    export GORGIAS_API_KEY=your-api-key")
    print(f"  or write them to {get_config_path()}")


def build_client(config: dict) -> GorgiasClient:
    return GorgiasClient(
        domain=config["domain"],
        email=config["email"],
        api_key=config["api_key"],
        requests_per_second=config.get("requests_per_second") or 2.0,
    )


def build_engine(config: dict) -> Engine | None:
    return create_warehouse_engine(config.get("database_url"))


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

def format_duration(seconds: float) -> str:
    """Human readable duration ("850ms", "12.3s", "4m 05s")."""
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs:02d}s"


def render_progress_bar(percentage: float | None, width: int = PROGRESS_BAR_WIDTH) -> str:
    if percentage is None:
        return ""
    filled = int(width * max(0.0, min(percentage, 100.0)) / 100)
    return f"[{'█' * filled}{'░' * (width - filled)}] {percentage:5.1f}%"


def print_progress(progress: SyncProgress) -> None:
    """Progress callback: redraws one line per phase."""
    bar = render_progress_bar(progress.percentage)
    line = f"{progress.entity_type:<10} {bar} {progress.processed} records"
    if progress.total_batches:
        line += f" ({progress.current_batch}/{progress.total_batches} tickets)"
    elif progress.current_batch:
        line += f" (page {progress.current_batch})"
    if progress.failed:
        line += f" {RED}{progress.failed} failed{RESET}"
    print(f"\r{BLUE}{line}{RESET}", end="", flush=True)


def print_summary(results: list[SyncResult]) -> None:
    """Final per-phase table; always printed, even after failures."""
    print(f"\n\n{BOLD}Sync Summary{RESET}\n")
    print(f"  {'Phase':<12}{'Records':>10}{'Failed':>10}{'Duration':>12}")
    print(f"  {'-' * 44}")

    for result in results:
        mark = f"{GREEN}✓{RESET}" if result.success else f"{RED}✗{RESET}"
        print(
            f"{mark} {result.entity_type:<12}{result.total_records:>10}"
            f"{result.failed_records:>10}{format_duration(result.duration):>12}"
        )
        if result.error:
            print(f"    {RED}{result.error}{RESET}")
        if result.failed_ids:
            shown = ", ".join(str(i) for i in result.failed_ids[:10])
            more = f" (+{len(result.failed_ids) - 10} more)" if len(result.failed_ids) > 10 else ""
            print(f"    {YELLOW}Failed tickets: {shown}{more}{RESET}")

    total = sum(r.total_records for r in results)
    duration = sum(r.duration for r in results)
    print(f"  {'-' * 44}")
    print(f"  {'Total':<12}{total:>10}{sum(r.failed_records for r in results):>10}"
          f"{format_duration(duration):>12}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_test(args, config: dict | None = None):
    """Test the Gorgias API and warehouse connections."""
    if config is None:
        config = load_config()

    if not is_api_configured(config):
        print_not_configured()
        return 1

    print_info(f"Connecting to {config['domain']}.gorgias.com...")

    try:
        client = build_client(config)
        with client:
            result = client.health_check()
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        return 1

    if result["status"] != "healthy":
        print_error(f"Connection failed: {result.get('message', 'Unknown error')}")
        return 1
    print_success(f"Connected to Gorgias account: {result.get('account')}")

    engine = build_engine(config)
    if engine is None:
        print_warning("DATABASE_URL not set - warehouse disabled")
        return 1

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print_error(f"Database connection failed: {e}")
        return 1
    finally:
        engine.dispose()

    print_success(f"Connected to warehouse ({engine.dialect.name})")
    return 0


def cmd_sync(args, config: dict | None = None):
    """Run one phase, or every phase for `full`."""
    if config is None:
        config = load_config()

    if not is_api_configured(config):
        print_not_configured()
        return 1

    engine = build_engine(config)
    if engine is None:
        print_error("DATABASE_URL not configured - nothing to sync into")
        return 1

    print_banner()
    mode = "incremental" if args.incremental else "full rescan"
    title = "Full Sync" if args.command == "full" else f"Syncing {args.command}"
    print(f"{BOLD}{title}{RESET} ({mode}, batch {args.batch}, concurrency {args.concurrency})\n")

    try:
        init_schema(engine)
    except SQLAlchemyError as e:
        print_error(f"Warehouse unavailable: {e}")
        engine.dispose()
        return 1

    try:
        client = build_client(config)
        sync = WarehouseSync(
            client,
            engine,
            batch_size=args.batch,
            concurrency=args.concurrency,
            incremental=args.incremental,
            stop_on_error=args.fail_fast,
            on_progress=print_progress,
        )

        with client:
            if args.command == "full":
                results = sync.full_sync()
            else:
                results = [sync.sync_phase(args.command)]

        if any(r.success and r.entity_type in ("customers", "tickets") for r in results):
            try:
                refresh_customer_ticket_counts(engine)
            except SQLAlchemyError as e:
                print_warning(f"Could not refresh customer ticket counts: {e}")
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        return 1
    finally:
        engine.dispose()

    print_summary(results)

    failed = [r for r in results if not r.success]
    if not failed:
        print(f"\n{GREEN}Sync complete!{RESET}")
        return 0

    print_warning(f"{len(failed)} phase(s) failed; re-run them individually")
    if args.command == "full":
        return 1 if args.fail_fast else 0
    return 1


def cmd_ticket(args, config: dict | None = None):
    """Refresh one ticket and its messages."""
    if config is None:
        config = load_config()

    if not is_api_configured(config):
        print_not_configured()
        return 1

    engine = build_engine(config)
    if engine is None:
        print_error("DATABASE_URL not configured - nothing to sync into")
        return 1

    try:
        init_schema(engine)
        client = build_client(config)
        with client:
            result = WarehouseSync(client, engine).sync_ticket(args.ticket_id)
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        return 1
    except SQLAlchemyError as e:
        print_error(f"Warehouse unavailable: {e}")
        return 1
    finally:
        engine.dispose()

    if result.success:
        print_success(
            f"Ticket {args.ticket_id} synced with {result.total_records} messages "
            f"in {format_duration(result.duration)}"
        )
        return 0

    print_error(f"Ticket {args.ticket_id} failed: {result.error}")
    return 1


def cmd_status(args, config: dict | None = None):
    """Show warehouse totals and per-entity sync status."""
    if config is None:
        config = load_config()

    engine = build_engine(config)
    if engine is None:
        print_error("DATABASE_URL not configured")
        return 1

    print_banner()

    try:
        init_schema(engine)
        stats = get_warehouse_stats(engine)
        channels = get_channel_breakdown(engine)
        cursors = SyncCursorStore(engine).get_status()
        logs = recent_sync_logs(engine, limit=args.logs)
    except Exception as e:
        print_error(f"Failed to get status: {e}")
        return 1
    finally:
        engine.dispose()

    print(f"{BOLD}Warehouse{RESET}\n")
    print(f"  Tickets: {stats['total_tickets']} "
          f"({stats['open_tickets']} open, {stats['closed_tickets']} closed)")
    print(f"  Customers: {stats['total_customers']}")
    print(f"  Messages: {stats['total_messages']}")
    print(f"  Agents: {stats['total_users']}")
    print(f"  Tags: {stats['total_tags']}")

    if channels:
        print(f"\n{BOLD}Channels:{RESET}")
        for channel, count in channels.items():
            print(f"  {channel}: {count}")

    print(f"\n{BOLD}Sync Status{RESET}\n")
    if not cursors:
        print_warning("  No sync completed yet")
    for status in cursors:
        synced = status.last_synced_at.strftime("%Y-%m-%d %H:%M:%S UTC") if status.last_synced_at else "never"
        print(f"  {status.entity_type:<12} {synced}  ({status.total_synced} records)")

    if logs:
        print(f"\n{BOLD}Recent Runs{RESET}\n")
        for log in logs:
            color = GREEN if log["status"] == "completed" else RED if log["status"] == "failed" else YELLOW
            started = log["started_at"].strftime("%Y-%m-%d %H:%M:%S") if log["started_at"] else "?"
            print(f"  {started}  {log['sync_type']:<12} {log['entity_type']:<10} "
                  f"{color}{log['status']}{RESET} ({log['processed_records']} records)")
            if log.get("error_message"):
                print(f"    {RED}{log['error_message']}{RESET}")

    return 0


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gorgias-warehouse",
        description="Gorgias -> warehouse sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gorgias-warehouse full                    Sync every entity type
  gorgias-warehouse full --fail-fast        Stop (and exit 1) at the first failed phase
  gorgias-warehouse tickets --incremental   Only pull tickets updated since the last run
  gorgias-warehouse messages --concurrency 5
  gorgias-warehouse ticket 12345            Refresh one ticket
  gorgias-warehouse status                  Show sync status
        """,
    )

    sync_options = argparse.ArgumentParser(add_help=False)
    sync_options.add_argument(
        "--batch", type=_positive_int, default=100, help="Page size per API request (max 100)"
    )
    sync_options.add_argument(
        "--concurrency", type=_positive_int, default=1,
        help="Parallel ticket-message fetches (all share one rate limiter)",
    )
    sync_options.add_argument(
        "--incremental", action="store_true",
        help="Only pull records updated since the last successful run",
    )
    sync_options.add_argument(
        "--fail-fast", action="store_true",
        help="Stop at the first failed phase and exit non-zero",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("full", parents=[sync_options], help="Sync every entity type in order")
    for phase in PHASE_ORDER:
        subparsers.add_parser(phase, parents=[sync_options], help=f"Sync {phase} only")

    ticket_parser = subparsers.add_parser("ticket", help="Refresh one ticket and its messages")
    ticket_parser.add_argument("ticket_id", type=int, help="Gorgias ticket id")

    status_parser = subparsers.add_parser("status", help="Show warehouse and sync status")
    status_parser.add_argument("--logs", type=_positive_int, default=10, help="Recent runs to show")

    subparsers.add_parser("test", help="Test API and database connections")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        print_banner()
        parser.print_help()
        return 0

    commands: dict[str, Any] = {
        "full": cmd_sync,
        "ticket": cmd_ticket,
        "status": cmd_status,
        "test": cmd_test,
        **{phase: cmd_sync for phase in PHASE_ORDER},
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
