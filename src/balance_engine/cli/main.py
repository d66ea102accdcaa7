"""CLI for the multichain balance engine."""

import asyncio
import json
from enum import StrEnum
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from balance_engine.core.models import Alert, PortfolioSummary, QueryResult, WalletRecord, WatchedEntity
from balance_engine.data import load_networks
from balance_engine.engine import BalanceEngine
from balance_engine.logger import setup_logging
from balance_engine.settings import EngineSettings

app = typer.Typer(
    name="balance-engine",
    help="Query and monitor native and token balances across many blockchain networks",
    add_completion=False,
)

console = Console()


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


def _settings(networks_file: Path | None, no_prices: bool) -> EngineSettings:
    overrides = {}
    if networks_file is not None:
        overrides["networks_file"] = networks_file
    settings = EngineSettings(**overrides)
    if no_prices:
        settings.pricing.enabled = False
    return settings


def _notify(result: QueryResult, message: str) -> None:
    console.print(f"[yellow]{result.network}:{result.address}[/yellow] {message}")


@app.command()
def balance(
    network: str = typer.Argument(..., help="Network code, e.g. ETH or BTC"),
    address: str = typer.Argument(..., help="Address to query"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    networks_file: Path | None = typer.Option(None, "--networks", help="Custom network catalogue"),
    no_prices: bool = typer.Option(False, "--no-prices", help="Skip USD price lookups"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Get the balance of one address.

    Examples:

        balance-engine balance ETH 0xABC...

        balance-engine balance BTC bc1q... --format json
    """
    settings = _settings(networks_file, no_prices)
    setup_logging(settings.log_level, debug=debug)

    async def run() -> QueryResult:
        async with BalanceEngine(settings, notifier=_notify) as engine:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console):
                return await engine.query(network.upper(), address)

    result = _run(run(), debug)
    if format == OutputFormat.JSON:
        _output_json([result])
    else:
        _output_results([result])
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def batch(
    file: Path = typer.Argument(..., exists=True, readable=True, help="File with one 'NETWORK ADDRESS' per line"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    networks_file: Path | None = typer.Option(None, "--networks", help="Custom network catalogue"),
    no_prices: bool = typer.Option(False, "--no-prices", help="Skip USD price lookups"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Get balances for every address listed in a file.

    Blank lines and lines starting with '#' are ignored.
    """
    settings = _settings(networks_file, no_prices)
    setup_logging(settings.log_level, debug=debug)
    queries = _read_queries(file)

    async def run() -> list[QueryResult]:
        async with BalanceEngine(settings, notifier=_notify) as engine:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
                progress.add_task(f"Querying {len(queries)} addresses...", total=None)
                return await engine.query_many(queries)

    results = _run(run(), debug)
    if format == OutputFormat.JSON:
        _output_json(results)
    else:
        _output_results(results)


@app.command()
def portfolio(
    file: Path = typer.Argument(..., exists=True, readable=True, help="YAML or JSON list of wallets"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    networks_file: Path | None = typer.Option(None, "--networks", help="Custom network catalogue"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """
    Summarize a portfolio of wallets.

    Each wallet needs 'network' and 'address'; 'id', 'last_known_balance' and
    'usd_value' are optional.
    """
    settings = _settings(networks_file, False)
    setup_logging(settings.log_level, debug=debug)
    wallets = _read_wallets(file)

    async def run() -> tuple[PortfolioSummary, BalanceEngine]:
        async with BalanceEngine(settings, notifier=_notify) as engine:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
                progress.add_task(f"Summarizing {len(wallets)} wallets...", total=None)
                return await engine.summarize_portfolio(wallets), engine

    summary, engine = _run(run(), debug)
    if format == OutputFormat.JSON:
        console.print(json.dumps(summary.model_dump(mode="json"), indent=2))
    else:
        _output_portfolio(summary, engine)


@app.command()
def watch(
    network: str = typer.Argument(..., help="Network code"),
    address: str = typer.Argument(..., help="Address to watch"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
    interval: float = typer.Option(15.0, "--interval", "-i", help="Minutes between checks"),
    threshold: float = typer.Option(5.0, "--threshold", "-t", help="Alert threshold in percent"),
    checks: int | None = typer.Option(None, "--checks", help="Stop after this many checks"),
    csv_out: Path | None = typer.Option(None, "--csv", help="Write the history to this CSV file on exit"),
    networks_file: Path | None = typer.Option(None, "--networks", help="Custom network catalogue"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
) -> None:
    """Watch an address and print alerts when its balance changes."""
    settings = _settings(networks_file, False)
    setup_logging(settings.log_level, debug=debug)

    def on_alert(alert: Alert) -> None:
        colour = "green" if alert.change_percent > 0 else "red"
        console.print(f"[bold {colour}]ALERT[/bold {colour}] {alert.message}")

    async def run() -> None:
        finished = asyncio.Event()
        done = 0

        def on_check(entity: WatchedEntity, result: QueryResult) -> None:
            nonlocal done
            _print_check(result)
            done += 1
            if checks is not None and done >= checks:
                finished.set()

        async with BalanceEngine(settings, notifier=_notify) as engine:
            engine.subscribe_alerts(on_alert)
            engine.subscribe_checks(on_check)
            console.print(f"[bold cyan]Watching[/bold cyan] {name or address} on {network.upper()}, Ctrl-C to stop")
            entity = await engine.watch(
                network.upper(),
                address,
                display_name=name,
                check_interval_minutes=interval,
                alert_threshold_percent=threshold,
            )
            try:
                await finished.wait()
            finally:
                if csv_out is not None:
                    csv_out.write_text(engine.export_history_csv(entity.id), encoding="utf-8")
                    console.print(f"[dim]History written to {csv_out}[/dim]")

    try:
        _run(run(), debug)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


@app.command()
def networks(
    mainnet_only: bool = typer.Option(False, "--mainnet-only", help="Hide test networks"),
    networks_file: Path | None = typer.Option(None, "--networks", help="Custom network catalogue"),
) -> None:
    """List all supported networks."""
    catalogue = load_networks(networks_file)

    table = Table(title="Supported Networks", show_header=True, header_style="bold magenta")
    table.add_column("Code", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Symbol", style="green")
    table.add_column("Adapter", style="yellow")
    table.add_column("Endpoints", justify="right")
    table.add_column("Tokens", justify="right")

    for code, config in catalogue.items():
        if mainnet_only and config.testnet:
            continue
        name = f"{config.name} [dim](testnet)[/dim]" if config.testnet else config.name
        table.add_row(code, name, config.symbol, config.adapter, str(len(config.endpoints)), str(len(config.tokens)))

    console.print(table)


def _run(coro, debug: bool):
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        raise
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if debug:
            raise
        raise typer.Exit(1) from e


def _read_queries(file: Path) -> list[tuple[str, str]]:
    queries = []
    for number, line in enumerate(file.read_text(encoding="utf-8").splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.replace(",", " ").split()
        if len(parts) != 2:
            console.print(f"[bold red]Line {number}:[/bold red] expected 'NETWORK ADDRESS', got {line!r}")
            raise typer.Exit(2)
        queries.append((parts[0].upper(), parts[1]))
    return queries


def _read_wallets(file: Path) -> list[WalletRecord]:
    raw = yaml.safe_load(file.read_text(encoding="utf-8")) or []
    if isinstance(raw, dict):
        raw = raw.get("wallets", [])
    wallets = []
    for index, entry in enumerate(raw):
        entry = dict(entry)
        entry.setdefault("id", str(index + 1))
        entry["id"] = str(entry["id"])
        entry["network"] = str(entry["network"]).upper()
        wallets.append(WalletRecord(**entry))
    return wallets


def _print_check(result: QueryResult) -> None:
    if result.ok:
        usd = f" (${result.usd_value:,.2f})" if result.usd_value is not None else ""
        console.print(f"[dim]{result.observed_at:%H:%M:%S}[/dim] {result.display_balance} {result.unit_symbol}{usd}")
    else:
        console.print(f"[dim]{result.observed_at:%H:%M:%S}[/dim] [red]{result.error_message}[/red]")


def _output_results(results: list[QueryResult]) -> None:
    """Output query results as rich table."""
    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Network", style="blue")
    table.add_column("Address", style="cyan")
    table.add_column("Balance", style="white", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")
    table.add_column("Tokens", style="green")
    table.add_column("Status", style="yellow")

    for result in results:
        address = result.address if len(result.address) <= 20 else f"{result.address[:10]}...{result.address[-8:]}"
        if result.ok:
            balance_str = f"{result.display_balance:,.6f} {result.unit_symbol}"
            usd_str = f"${result.usd_value:,.2f}" if result.usd_value is not None else "-"
            tokens = ", ".join(f"{t.display_balance:,.4f} {t.symbol}" for t in result.tokens) or "-"
            status = f"✓ {result.provider}"
        else:
            balance_str, usd_str, tokens = "-", "-", "-"
            status = f"[red]{result.error_kind.value}[/red]"
        table.add_row(result.network, address, balance_str, usd_str, tokens, status)

    console.print("\n")
    console.print(table)


def _output_portfolio(summary: PortfolioSummary, engine: BalanceEngine) -> None:
    """Output portfolio summary as rich tables."""
    if not summary.wallets:
        console.print("\n[yellow]No wallets found[/yellow]")
        return

    networks_table = Table(title="By Network", show_header=True, header_style="bold magenta")
    networks_table.add_column("Network", style="blue")
    networks_table.add_column("Wallets", justify="right")
    networks_table.add_column("Native", justify="right")
    networks_table.add_column("Tokens", justify="right")
    networks_table.add_column("Total", style="bold green", justify="right")
    for network in summary.networks:
        networks_table.add_row(
            network.network,
            str(network.wallet_count),
            f"${network.total_native_value:,.2f}",
            f"${network.total_token_value:,.2f}",
            f"${network.total_value:,.2f}",
        )

    console.print("\n")
    console.print(networks_table)

    if summary.top_tokens:
        tokens_table = Table(title="Top Tokens", show_header=True, header_style="bold magenta")
        tokens_table.add_column("Token", style="green")
        tokens_table.add_column("Network", style="blue")
        tokens_table.add_column("Holders", justify="right")
        tokens_table.add_column("Value", style="bold green", justify="right")
        for token in summary.top_tokens:
            tokens_table.add_row(token.symbol, token.network, str(token.holders), f"${token.total_value:,.2f}")
        console.print(tokens_table)

    stats = engine.portfolio_stats(summary)
    summary_table = Table(show_header=False, box=None)
    summary_table.add_column("Label", style="bold")
    summary_table.add_column("Value", style="bold green")
    summary_table.add_row("Total Value:", stats.total_value_formatted)
    summary_table.add_row("Wallets:", str(summary.total_wallets))
    summary_table.add_row("Average Wallet:", stats.average_wallet_value)
    summary_table.add_row("Token Share:", f"{stats.token_percentage}%")
    summary_table.add_row("Top Network:", stats.top_network)
    summary_table.add_row("Top Token:", stats.top_token)
    summary_table.add_row("Diversification:", f"{stats.diversification_score}/100")

    console.print("\n")
    console.print(summary_table)
    console.print("\n")


def _output_json(results: list[QueryResult]) -> None:
    """Output query results as JSON."""

    data = [result.model_dump(mode="json") for result in results]
    console.print(json.dumps(data, indent=2))


if __name__ == "__main__":
    app()
