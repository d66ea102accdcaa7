"""Portfolio aggregation over wallets and their query results."""

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal

from balance_engine.core.models import (
    NetworkConfig,
    NetworkSummary,
    PortfolioStats,
    PortfolioSummary,
    Query,
    QueryResult,
    TokenSummary,
    WalletRecord,
    WalletSummary,
)

TOP_TOKEN_LIMIT = 10


class PortfolioAggregator:
    """
    Reduces wallets and query results into a portfolio summary.

    Aggregation is pure: no network or cache access, so the same inputs
    always give the same summary.

    Parameters
    ----------
    networks : Mapping[str, NetworkConfig] | None
        Network catalogue, used for native symbols of wallets without a result

    """

    def __init__(self, networks: Mapping[str, NetworkConfig] | None = None) -> None:
        self.networks = dict(networks or {})

    def summarize(self, wallets: Iterable[WalletRecord], results: Iterable[QueryResult]) -> PortfolioSummary:
        """
        Aggregate wallets into a portfolio summary.

        Each wallet is matched to its result by ``(network, address)``. Failed
        results are ignored and the wallet's stored balance is used instead.

        Parameters
        ----------
        wallets : Iterable[WalletRecord]
            Wallets from the persistence layer
        results : Iterable[QueryResult]
            Latest query results

        Returns
        -------
        PortfolioSummary
            Totals, per-network and per-wallet breakdowns sorted by value, the
            ten most valuable tokens, and the diversification score

        """
        by_key = {result.query: result for result in results if result.ok}

        wallet_summaries: list[WalletSummary] = []
        network_map: dict[str, NetworkSummary] = {}
        token_map: dict[tuple[str, str], dict] = {}

        for wallet in wallets:
            result = by_key.get(Query(network=wallet.network, address=wallet.address))

            native_usd = _first_value(result.usd_value if result else None, wallet.usd_value)
            token_usd = Decimal("0")
            token_count = 0

            if result is not None:
                for token in result.tokens:
                    token_count += 1
                    value = token.usd_value or Decimal("0")
                    token_usd += value

                    data = token_map.setdefault(
                        (token.symbol, wallet.network),
                        {"symbol": token.symbol, "name": token.name, "total_value": Decimal("0"), "holders": set()},
                    )
                    data["total_value"] += value
                    data["holders"].add(wallet.address)

            symbol = result.unit_symbol if result else self._symbol(wallet.network)
            total_usd = native_usd + token_usd
            wallet_summaries.append(
                WalletSummary(
                    id=wallet.id,
                    network=wallet.network,
                    address=wallet.address,
                    native_balance=(
                        result.display_balance if result else wallet.last_known_balance or Decimal("0")
                    ),
                    native_symbol=symbol,
                    native_usd_value=native_usd,
                    token_count=token_count,
                    token_usd_value=token_usd,
                    total_usd_value=total_usd,
                    last_checked=result.observed_at if result else wallet.last_checked,
                )
            )

            network_summary = network_map.setdefault(
                wallet.network,
                NetworkSummary(network=wallet.network, symbol=self._symbol(wallet.network)),
            )
            network_summary.wallet_count += 1
            network_summary.total_native_value += native_usd
            network_summary.total_token_value += token_usd
            network_summary.total_value += total_usd

        top_tokens = sorted(
            (
                TokenSummary(
                    symbol=data["symbol"],
                    name=data["name"],
                    network=network,
                    total_value=data["total_value"],
                    holders=len(data["holders"]),
                )
                for (_, network), data in token_map.items()
            ),
            key=lambda token: token.total_value,
            reverse=True,
        )[:TOP_TOKEN_LIMIT]

        summary = PortfolioSummary(
            total_wallets=len(wallet_summaries),
            total_value=sum((w.total_usd_value for w in wallet_summaries), Decimal("0")),
            total_native_value=sum((w.native_usd_value for w in wallet_summaries), Decimal("0")),
            total_token_value=sum((w.token_usd_value for w in wallet_summaries), Decimal("0")),
            networks=sorted(network_map.values(), key=lambda n: n.total_value, reverse=True),
            wallets=sorted(wallet_summaries, key=lambda w: w.total_usd_value, reverse=True),
            top_tokens=top_tokens,
        )
        summary.diversification_score = diversification_score(summary)
        return summary

    def stats(self, summary: PortfolioSummary) -> PortfolioStats:
        """
        Format display figures for a summary.

        Parameters
        ----------
        summary : PortfolioSummary
            Summary produced by ``summarize``

        Returns
        -------
        PortfolioStats
            Formatted totals, token share, average wallet value and leaders

        """
        token_percentage = (
            summary.total_token_value / summary.total_value * 100 if summary.total_value > 0 else Decimal("0")
        )
        average = summary.total_value / summary.total_wallets if summary.total_wallets > 0 else Decimal("0")
        return PortfolioStats(
            total_value_formatted=format_currency(summary.total_value),
            token_percentage=f"{token_percentage:.1f}",
            average_wallet_value=format_currency(average),
            network_count=len(summary.networks),
            diversification_score=summary.diversification_score,
            top_network=summary.networks[0].network if summary.networks else "N/A",
            top_token=summary.top_tokens[0].symbol if summary.top_tokens else "N/A",
        )

    def _symbol(self, network: str) -> str:
        config = self.networks.get(network)
        return config.symbol if config else network


def diversification_score(summary: PortfolioSummary) -> int:
    """
    Score how spread a portfolio is, from 0 to 100.

    Up to 40 points for networks (8 each), up to 30 for tokens (3 each) and up
    to 30 for how little of the value sits on the largest network.

    Parameters
    ----------
    summary : PortfolioSummary
        Summary with networks sorted by value

    Returns
    -------
    int
        Rounded score, 0 when the portfolio has no value

    """
    if summary.total_value <= 0:
        return 0

    network_score = Decimal(min(len(summary.networks) * 8, 40))
    token_score = Decimal(min(len(summary.top_tokens) * 3, 30))
    top_value = summary.networks[0].total_value if summary.networks else Decimal("0")
    concentration = top_value / summary.total_value
    distribution_score = max(Decimal("0"), (1 - concentration) * 30)

    score = network_score + token_score + distribution_score
    return int(score.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(value: Decimal) -> str:
    """
    Format a USD amount with K/M suffixes.

    Examples
    --------
    >>> format_currency(Decimal("1234.5"))
    '$1.23K'

    """
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.2f}K"
    return f"${value:.2f}"


def _first_value(*values: Decimal | None) -> Decimal:
    for value in values:
        if value is not None:
            return value
    return Decimal("0")
