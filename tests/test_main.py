"""Tests for the command line entry point."""

import json
import uuid
from datetime import UTC, datetime

import pytest

from cardano_portfolio_tracker.__main__ import build_parser, main
from cardano_portfolio_tracker.config import clear_settings_cache


@pytest.fixture(autouse=True)
def _cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("REDIS_URL", "DISCORD_WEBHOOK_URL", "DRY_RUN", "TOKEN_USD_PRICE_OVERRIDES_JSON"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestParser:
    """Tests for build_parser."""

    def test_snapshot_arguments(self) -> None:
        wallet_id = uuid.uuid4()

        args = build_parser().parse_args(["snapshot", "--wallet-id", str(wallet_id)])

        assert args.command == "snapshot"
        assert args.wallet_id == wallet_id
        assert args.batch is None

    def test_bucket_accepts_zulu(self) -> None:
        args = build_parser().parse_args(["check-thresholds", "--bucket", "2026-03-01T12:00:00Z"])

        assert args.bucket == datetime(2026, 3, 1, 12, tzinfo=UTC)

    def test_rejects_bad_bucket(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["check-thresholds", "--bucket", "yesterday"])

    def test_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    """Tests for main."""

    def test_init_and_seed(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setenv("TOKEN_USD_PRICE_OVERRIDES_JSON", '{"unitA": {"priceUsd": 1.5}}')

        assert main(["init-db"]) == 0
        assert json.loads(capsys.readouterr().out) == {"ok": True}

        assert main(["seed-tokens"]) == 0
        assert json.loads(capsys.readouterr().out) == {"base": 2, "overrides": 1}

    def test_configuration_error(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setenv("DATABASE_URL", "mysql://localhost/db")

        assert main(["init-db"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_check_thresholds_requires_sink(self, capsys) -> None:
        assert main(["check-thresholds"]) == 2
        assert "DISCORD_WEBHOOK_URL" in capsys.readouterr().err

    def test_service_error_exit_code(self, capsys) -> None:
        assert main(["init-db"]) == 0
        capsys.readouterr()

        assert main(["snapshot", "--wallet-id", str(uuid.uuid4())]) == 1
        last_line = capsys.readouterr().err.strip().splitlines()[-1]
        assert "Wallet not found" in json.loads(last_line)["error"]
