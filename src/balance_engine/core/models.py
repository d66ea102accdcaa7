"""Data models for queries, results, watched entities, and portfolio summaries."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ErrorKind(StrEnum):
    """Classified failure kind attached to a failed query result."""

    CROSS_ORIGIN_BLOCKED = "cross_origin_blocked"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    NETWORK_ERROR = "network_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"
    CANCELLED = "cancelled"


class AlertDirection(StrEnum):
    """Direction of a balance change that triggered an alert."""

    INCREASE = "increase"
    DECREASE = "decrease"


class WatchState(StrEnum):
    """Lifecycle state of a watched entity."""

    IDLE = "idle"
    CHECKING = "checking"


class Query(BaseModel):
    """
    Unit of work: one address on one network.

    Queries are frozen and hashable so they double as cache keys.

    Attributes
    ----------
    network : str
        Network code (e.g., 'ETH', 'BTC')
    address : str
        Address on that network

    """

    model_config = ConfigDict(frozen=True)

    network: str
    address: str

    def __str__(self) -> str:
        return f"{self.network}:{self.address}"


class TokenConfig(BaseModel):
    """
    Token tracked on a network.

    Attributes
    ----------
    contract : str
        Token contract address
    symbol : str
        Token symbol (e.g., 'USDC')
    decimals : int
        Number of decimal places
    name : str | None
        Full token name

    """

    contract: str
    symbol: str
    decimals: int
    name: str | None = None


class ProviderEndpoint(BaseModel):
    """
    One RPC or HTTP API instance serving a network.

    Attributes
    ----------
    network : str
        Network code the endpoint serves
    url : str
        Base URL
    priority : int
        Lower values are tried first
    name : str
        Provider name used as the rate limiting key
    adapter : str | None
        Adapter kind overriding the network default, for networks served by
        several API families

    """

    model_config = ConfigDict(frozen=True)

    network: str
    url: str
    priority: int = 0
    name: str
    adapter: str | None = None


class NetworkConfig(BaseModel):
    """
    Static description of a supported network.

    Attributes
    ----------
    code : str
        Network code (e.g., 'ETH')
    name : str
        Human readable name
    symbol : str
        Native unit symbol
    decimals : int
        Decimal places of the native unit
    adapter : str
        Provider adapter kind used to reach the network
    chain_id : int | None
        EVM chain id where applicable
    price_id : str | None
        Price lookup identifier for the native unit
    bulk : bool
        Whether endpoints tolerate parallel reads
    testnet : bool
        Whether this is a test network
    endpoints : list[ProviderEndpoint]
        Redundant endpoints, ordered by priority
    tokens : list[TokenConfig]
        Tokens whose balances are fetched alongside the native balance

    """

    code: str
    name: str
    symbol: str
    decimals: int
    adapter: str
    chain_id: int | None = None
    price_id: str | None = None
    price_chain: str | None = None
    bulk: bool = False
    testnet: bool = False
    endpoints: list[ProviderEndpoint] = Field(default_factory=list)
    tokens: list[TokenConfig] = Field(default_factory=list)


class TokenHolding(BaseModel):
    """Token balance held by an address."""

    model_config = ConfigDict(frozen=True)

    contract: str
    symbol: str
    name: str | None = None
    decimals: int
    raw_balance: int
    display_balance: Decimal
    usd_value: Decimal | None = None


class BalanceReading(BaseModel):
    """Canonical balance returned by a provider adapter before enrichment."""

    model_config = ConfigDict(frozen=True)

    raw_balance: int
    tokens: list[TokenHolding] = Field(default_factory=list)


class QueryResult(BaseModel):
    """
    Outcome of one completed query.

    Attributes
    ----------
    network : str
        Network code
    address : str
        Queried address
    raw_balance : int
        Balance in the smallest unit (wei, satoshi, lamport)
    display_balance : Decimal
        Balance in whole native units
    unit_symbol : str
        Native unit symbol
    usd_value : Decimal | None
        USD value of the native balance, when a price was available
    observed_at : datetime
        When the result was produced
    error_kind : ErrorKind | None
        Set iff the query failed
    error_message : str | None
        Human readable failure description
    tokens : list[TokenHolding]
        Tracked token holdings
    provider : str | None
        Name of the endpoint that answered

    """

    model_config = ConfigDict(frozen=True)

    network: str
    address: str
    raw_balance: int = 0
    display_balance: Decimal = Decimal("0")
    unit_symbol: str
    usd_value: Decimal | None = None
    observed_at: datetime = Field(default_factory=utcnow)
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    tokens: list[TokenHolding] = Field(default_factory=list)
    provider: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the query succeeded."""
        return self.error_kind is None

    @property
    def query(self) -> Query:
        return Query(network=self.network, address=self.address)


class WatchedEntity(BaseModel):
    """
    A (network, address) pair under periodic monitoring.

    Attributes
    ----------
    id : str
        Entity identifier, ``NETWORK-address``
    network : str
        Network code
    address : str
        Watched address
    display_name : str | None
        Optional label
    check_interval_minutes : float
        Minutes between checks
    alert_threshold_percent : float
        Absolute percent change that raises an alert
    state : WatchState
        Current lifecycle state
    last_result : QueryResult | None
        Most recent check outcome, successful or not
    last_checked_at : datetime | None
        When the last check completed
    created_at : datetime
        When the entity was registered

    """

    id: str
    network: str
    address: str
    display_name: str | None = None
    check_interval_minutes: float = 15.0
    alert_threshold_percent: float = 5.0
    state: WatchState = WatchState.IDLE
    last_result: QueryResult | None = None
    last_checked_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def label(self) -> str:
        return self.display_name or self.address


class HistoryEntry(BaseModel):
    """Balance observation recorded by the monitor."""

    entity_id: str
    result: QueryResult
    change_percent: float = 0.0
    change_amount: Decimal = Decimal("0")
    recorded_at: datetime = Field(default_factory=utcnow)


class Alert(BaseModel):
    """
    Balance change alert.

    Attributes
    ----------
    id : str
        Alert identifier
    entity_id : str
        Watched entity that changed
    direction : AlertDirection
        Increase or decrease
    change_percent : float
        Signed percent change
    change_amount : Decimal
        Signed change in native units
    previous_balance : Decimal
        Balance before the change
    new_balance : Decimal
        Balance after the change
    message : str
        Human readable summary
    created_at : datetime
        When the alert was raised
    acknowledged : bool
        Whether a user has read the alert

    """

    id: str
    entity_id: str
    direction: AlertDirection
    change_percent: float
    change_amount: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    message: str
    created_at: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False


class CacheStats(BaseModel):
    """Cache occupancy counted at call time."""

    total: int
    valid: int
    expired: int


class WalletRecord(BaseModel):
    """
    Wallet as supplied by the persistence layer.

    Attributes
    ----------
    id : str
        Wallet identifier
    network : str
        Network code
    address : str
        Wallet address
    last_known_balance : Decimal | None
        Balance stored with the wallet, used when no fresh result exists
    usd_value : Decimal | None
        Stored USD value
    last_checked : datetime | None
        When the stored balance was observed

    """

    id: str
    network: str
    address: str
    last_known_balance: Decimal | None = None
    usd_value: Decimal | None = None
    last_checked: datetime | None = None


class WalletSummary(BaseModel):
    """Per-wallet line of a portfolio summary."""

    id: str
    network: str
    address: str
    native_balance: Decimal
    native_symbol: str
    native_usd_value: Decimal
    token_count: int
    token_usd_value: Decimal
    total_usd_value: Decimal
    last_checked: datetime | None = None


class NetworkSummary(BaseModel):
    """Per-network aggregate of a portfolio summary."""

    network: str
    symbol: str
    wallet_count: int = 0
    total_native_value: Decimal = Decimal("0")
    total_token_value: Decimal = Decimal("0")
    total_value: Decimal = Decimal("0")


class TokenSummary(BaseModel):
    """Token aggregated across all wallets."""

    symbol: str
    name: str | None = None
    network: str
    total_value: Decimal
    holders: int


class PortfolioSummary(BaseModel):
    """
    Aggregated portfolio view across all wallets.

    Attributes
    ----------
    total_wallets : int
        Number of wallets summarized
    total_value : Decimal
        Native plus token value in USD
    total_native_value : Decimal
        Native balance value in USD
    total_token_value : Decimal
        Token value in USD
    networks : list[NetworkSummary]
        Per-network aggregates, by value descending
    wallets : list[WalletSummary]
        Per-wallet lines, by value descending
    top_tokens : list[TokenSummary]
        Ten most valuable tokens
    diversification_score : int
        0-100 spread heuristic

    """

    total_wallets: int
    total_value: Decimal = Decimal("0")
    total_native_value: Decimal = Decimal("0")
    total_token_value: Decimal = Decimal("0")
    networks: list[NetworkSummary] = Field(default_factory=list)
    wallets: list[WalletSummary] = Field(default_factory=list)
    top_tokens: list[TokenSummary] = Field(default_factory=list)
    diversification_score: int = 0


class PortfolioStats(BaseModel):
    """Display figures derived from a portfolio summary."""

    total_value_formatted: str
    token_percentage: str
    average_wallet_value: str
    network_count: int
    diversification_score: int
    top_network: str
    top_token: str


class EntityStats(BaseModel):
    """Balance statistics over a watched entity's history."""

    current_balance: Decimal
    highest_balance: Decimal
    lowest_balance: Decimal
    total_change: Decimal
    total_change_percent: float
    history_count: int
    first_check: datetime
    last_check: datetime
