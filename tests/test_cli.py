"""Tests for the command line interface that need no network access."""

from decimal import Decimal

import pytest
from rich.console import Console
from typer.testing import CliRunner

from balance_engine import BalanceEngine, EngineSettings
from balance_engine.cli import main
from balance_engine.cli.main import _output_json, _read_queries, _read_wallets, app
from conftest import make_result

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(main, "console", Console(width=200))


def test_networks_command():
    """Test the catalogue listing and the testnet filter."""
    everything = runner.invoke(app, ["networks"])
    mainnets = runner.invoke(app, ["networks", "--mainnet-only"])

    assert everything.exit_code == 0
    assert "ETH_SEPOLIA" in everything.output
    assert mainnets.exit_code == 0
    assert "BTC" in mainnets.output
    assert "ETH_SEPOLIA" not in mainnets.output


def test_read_queries(tmp_path):
    """Test query files accept comments, blank lines and commas."""
    path = tmp_path / "queries.txt"
    path.write_text("# wallets\n\neth 0xabc\nBTC,bc1q\n", encoding="utf-8")

    assert _read_queries(path) == [("ETH", "0xabc"), ("BTC", "bc1q")]


def test_batch_rejects_malformed_line(tmp_path):
    """Test a malformed query file fails before any request."""
    path = tmp_path / "queries.txt"
    path.write_text("ETH\n", encoding="utf-8")

    result = runner.invoke(app, ["batch", str(path)])

    assert result.exit_code == 2
    assert "expected 'NETWORK ADDRESS'" in result.output


def test_read_wallets(tmp_path):
    """Test wallet files in list or mapping form."""
    path = tmp_path / "wallets.yaml"
    path.write_text(
        "wallets:\n"
        "  - {network: eth, address: '0xabc', usd_value: '12.5'}\n"
        "  - {id: 7, network: BTC, address: bc1q}\n",
        encoding="utf-8",
    )

    wallets = _read_wallets(path)

    assert [(w.id, w.network, w.address) for w in wallets] == [("1", "ETH", "0xabc"), ("7", "BTC", "bc1q")]
    assert wallets[0].usd_value == Decimal("12.5")


def test_watch_prints_each_completed_check(monkeypatch, tmp_path, networks, adapter, bulk_adapter):
    """Test the watch command prints the result of every check the monitor runs."""
    adapter.balances["w1"] = 50_000_000
    settings = EngineSettings(
        rate_limit={"min_global_gap": 0, "min_provider_gap": 0, "cooldown": 0},
        scheduler={"item_delay": 0, "batch_delay": 0, "bulk_pause": 0},
        pricing={"enabled": False},
    )

    def stub_engine(_settings, notifier=None):
        return BalanceEngine(
            settings, networks=networks, adapters={"stub": adapter, "stub_bulk": bulk_adapter}, notifier=notifier
        )

    monkeypatch.setattr(main, "BalanceEngine", stub_engine)
    history = tmp_path / "history.csv"

    result = runner.invoke(
        app, ["watch", "test", "w1", "--interval", "0.0001", "--checks", "2", "--csv", str(history)]
    )

    assert result.exit_code == 0, result.output
    checks = [line for line in result.output.splitlines() if line.endswith(" TEST")]
    assert len(checks) == 2
    assert history.read_text(encoding="utf-8").startswith("Address: w1\n")


def test_output_json_serializes_decimals(capsys):
    """Test JSON output renders amounts as strings."""
    _output_json([make_result("ETH", "0xabc", "1.25", usd_value="3000.5")])

    out = capsys.readouterr().out
    assert '"display_balance": "1.25"' in out
    assert '"usd_value": "3000.5"' in out
