"""
Tests for the command-line interface.
"""

import json

import pytest
from sqlalchemy.exc import OperationalError

from gorgias_warehouse import cli
from gorgias_warehouse.sync import SyncProgress, SyncResult


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    path = tmp_path / ".gorgias-warehouse" / "config.json"
    monkeypatch.setattr(cli, "get_config_path", lambda: path)
    for env_var in cli.ENV_MAPPINGS.values():
        monkeypatch.delenv(env_var, raising=False)
    return path


@pytest.fixture
def config(tmp_path):
    return {
        "domain": "acme-shop",
        "email": "alex@acme-shop.com",
        "api_key": "test-api-key-123",
        "database_url": f"sqlite:///{tmp_path / 'cli.db'}",
    }


@pytest.fixture
def use_fake_client(monkeypatch, client):
    monkeypatch.setattr(cli, "build_client", lambda config: client)
    return client


class TestArgumentParsing:
    """Tests for sub-commands and flags."""

    def test_sync_defaults(self):
        args = cli.build_parser().parse_args(["full"])

        assert args.command == "full"
        assert args.batch == 100
        assert args.concurrency == 1
        assert args.incremental is False
        assert args.fail_fast is False

    def test_sync_flags(self):
        args = cli.build_parser().parse_args(
            ["messages", "--batch", "50", "--concurrency=5", "--incremental", "--fail-fast"]
        )

        assert args.command == "messages"
        assert args.batch == 50
        assert args.concurrency == 5
        assert args.incremental is True
        assert args.fail_fast is True

    @pytest.mark.parametrize("command", ["users", "tags", "customers", "tickets", "messages"])
    def test_every_phase_is_a_command(self, command):
        assert cli.build_parser().parse_args([command]).command == command

    def test_ticket_id(self):
        args = cli.build_parser().parse_args(["ticket", "12345"])
        assert args.ticket_id == 12345

    def test_rejects_non_positive_batch(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["full", "--batch", "0"])

    def test_rejects_unknown_command(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["orders"])

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "gorgias-warehouse" in capsys.readouterr().out


class TestConfig:
    """Tests for config file + environment loading."""

    def test_empty_config(self, config_path):
        assert cli.load_config() == {}

    def test_file_values(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"domain": "from-file", "requests_per_second": 1}))

        config = cli.load_config()

        assert config["domain"] == "from-file"
        assert config["requests_per_second"] == 1.0

    def test_env_overrides_file(self, config_path, monkeypatch):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"domain": "from-file"}))
        monkeypatch.setenv("GORGIAS_DOMAIN", "from-env")
        monkeypatch.setenv("GORGIAS_REQUESTS_PER_SECOND", "1.5")

        config = cli.load_config()

        assert config["domain"] == "from-env"
        assert config["requests_per_second"] == 1.5

    def test_is_api_configured(self, config):
        assert cli.is_api_configured(config) is True
        assert cli.is_api_configured(dict(config, email="")) is False


class TestOutput:
    @pytest.mark.parametrize(
        "seconds,expected",
        [(0.25, "250ms"), (12.34, "12.3s"), (245, "4m 05s")],
    )
    def test_format_duration(self, seconds, expected):
        assert cli.format_duration(seconds) == expected

    def test_progress_bar(self):
        assert cli.render_progress_bar(50.0, width=10) == "[█████░░░░░]  50.0%"
        assert cli.render_progress_bar(None) == ""

    def test_print_progress(self, capsys):
        cli.print_progress(SyncProgress("messages", "syncing", 12, failed=1, percentage=40.0,
                                        current_batch=4, total_batches=10))

        out = capsys.readouterr().out
        assert "messages" in out
        assert "(4/10 tickets)" in out
        assert "1 failed" in out

    def test_summary_shows_failures(self, capsys):
        cli.print_summary([
            SyncResult(success=True, entity_type="users", total_records=3, duration=0.2),
            SyncResult(success=False, entity_type="tags", error="Rate limited (HTTP 429)"),
            SyncResult(success=True, entity_type="messages", total_records=9, failed_records=1,
                       failed_ids=[5]),
        ])

        out = capsys.readouterr().out
        assert "✓" in out and "✗" in out
        assert "Rate limited (HTTP 429)" in out
        assert "Failed tickets: 5" in out


class TestCommands:
    """Commands run against the fake API and an SQLite warehouse."""

    def test_sync_requires_api_config(self, config, capsys):
        args = cli.build_parser().parse_args(["full"])

        assert cli.cmd_sync(args, dict(config, api_key=None)) == 1
        assert "not configured" in capsys.readouterr().out

    def test_sync_requires_database(self, config):
        args = cli.build_parser().parse_args(["users"])

        assert cli.cmd_sync(args, dict(config, database_url=None)) == 1

    def test_single_phase(self, config, use_fake_client, fake_api, sample_user_data, capsys):
        fake_api.add_list("/users", [sample_user_data])
        args = cli.build_parser().parse_args(["users"])

        assert cli.cmd_sync(args, config) == 0
        assert "Sync complete!" in capsys.readouterr().out

    def test_full_run_with_failed_phase(self, config, use_fake_client, fake_api):
        for path in ("/users", "/tags", "/customers", "/tickets"):
            fake_api.add_list(path, [])
        fake_api.fail_always("/tags", 401)

        args = cli.build_parser().parse_args(["full"])
        assert cli.cmd_sync(args, config) == 0

        args = cli.build_parser().parse_args(["full", "--fail-fast"])
        assert cli.cmd_sync(args, config) == 1

    def test_failed_single_phase_exits_non_zero(self, config, use_fake_client, fake_api):
        fake_api.fail_always("/customers", 401)
        args = cli.build_parser().parse_args(["customers"])

        assert cli.cmd_sync(args, config) == 1

    def test_summary_printed_when_count_refresh_fails(
        self, config, use_fake_client, fake_api, make_ticket, monkeypatch, capsys
    ):
        fake_api.add_list("/tickets", [make_ticket(1)])

        def broken_refresh(engine):
            raise OperationalError("UPDATE gorgias_customers", {}, Exception("connection lost"))

        monkeypatch.setattr(cli, "refresh_customer_ticket_counts", broken_refresh)
        args = cli.build_parser().parse_args(["tickets"])

        assert cli.cmd_sync(args, config) == 0
        out = capsys.readouterr().out
        assert "Could not refresh customer ticket counts" in out
        assert "Sync Summary" in out

    def test_sync_with_unreachable_warehouse(self, config, use_fake_client, monkeypatch, capsys):
        def broken_init(engine):
            raise OperationalError("CREATE TABLE", {}, Exception("connection refused"))

        monkeypatch.setattr(cli, "init_schema", broken_init)
        args = cli.build_parser().parse_args(["full"])

        assert cli.cmd_sync(args, config) == 1
        assert "Warehouse unavailable" in capsys.readouterr().out

    def test_ticket_command(self, config, use_fake_client, fake_api, make_ticket, make_message, capsys):
        fake_api.add_object("/tickets/42", make_ticket(42))
        fake_api.add_list("/tickets/42/messages", [make_message(1, 42)])
        args = cli.build_parser().parse_args(["ticket", "42"])

        assert cli.cmd_ticket(args, config) == 0
        assert "Ticket 42 synced with 1 messages" in capsys.readouterr().out

    def test_status(self, config, use_fake_client, fake_api, sample_user_data, capsys):
        fake_api.add_list("/users", [sample_user_data])
        cli.cmd_sync(cli.build_parser().parse_args(["users"]), config)
        capsys.readouterr()

        assert cli.cmd_status(cli.build_parser().parse_args(["status"]), config) == 0

        out = capsys.readouterr().out
        assert "Agents: 1" in out
        assert "users" in out
        assert "completed" in out

    def test_status_requires_database(self, config):
        args = cli.build_parser().parse_args(["status"])
        assert cli.cmd_status(args, dict(config, database_url=None)) == 1

    def test_connection_test(self, config, use_fake_client, fake_api, capsys):
        fake_api.add_object("/account", {"domain": "acme-shop"})

        assert cli.cmd_test(None, config) == 0
        out = capsys.readouterr().out
        assert "Connected to Gorgias account: acme-shop" in out
        assert "Connected to warehouse (sqlite)" in out
