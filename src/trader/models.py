"""Shared data models for the signal-to-settlement pipeline.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, fees
or balances. Timestamps are timezone-aware UTC datetimes.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


def new_id() -> str:
    """Return a fresh random record id."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class SignalAction(str, Enum):
    """Directional decision produced by the signal analyzer or carried by an alert."""

    BUY = "buy"
    SELL = "sell"
    NONE = "none"


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class PositionSide(str, Enum):
    """Position direction."""

    LONG = "long"
    SHORT = "short"

    @property
    def closing_side(self) -> OrderSide:
        """Order side that reduces a position in this direction."""
        return OrderSide.SELL if self is PositionSide.LONG else OrderSide.BUY


class Venue(str, Enum):
    """Supported trading venues."""

    BINANCE = "binance"
    BYBIT = "bybit"


class ProductType(str, Enum):
    FUTURES = "futures"
    SPOT = "spot"


class Environment(str, Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


class TradeStatus(str, Enum):
    FILLED = "filled"
    FAILED = "failed"


class TriggerSource(str, Enum):
    """What caused a trade to be placed."""

    AUTO_STRATEGY = "auto_strategy"
    TRADINGVIEW_WEBHOOK = "tradingview_webhook"
    POSITION_MONITOR = "position_monitor"
    MANUAL_CLOSE = "manual_close"


class WebhookStatus(str, Enum):
    """Outcome recorded in the audit trail for each signal or alert."""

    EXECUTED = "executed"
    REJECTED = "rejected"
    FILTERED = "filtered"
    FAILED = "failed"


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    SERVICE_FEE = "service_fee"
    REFUND = "refund"
    DEMO_DEPOSIT = "demo_deposit"
    REFERRAL_COMMISSION = "referral_commission"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. Sequences are ordered ascending by timestamp."""

    timestamp: int  # Unix milliseconds (bar open time)
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


@dataclass
class Trade:
    """Immutable execution record. Trades are append-only."""

    user_id: str
    venue: Venue
    environment: Environment
    symbol: str
    side: OrderSide
    price: Decimal
    quantity: Decimal
    status: TradeStatus
    triggered_by: TriggerSource
    strategy_id: str | None = None
    order_id: str | None = None
    realized_pnl: Decimal | None = None
    order_type: str = "market"
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class Position:
    """Locally tracked venue position.

    Created on entry fill, updated in place by the reconciler and closed
    (is_open cleared) when the venue reports zero size or on manual close.
    """

    user_id: str
    venue: Venue
    environment: Environment
    symbol: str
    side: PositionSide
    size: Decimal
    entry_price: Decimal
    leverage: int = 1
    strategy_id: str | None = None
    current_price: Decimal | None = None
    unrealized_pnl: Decimal = Decimal("0")
    stop_loss: Decimal | None = None
    take_profit: Decimal | None = None
    is_open: bool = True
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    closed_at: datetime | None = None


@dataclass
class WebhookLog:
    """Append-only audit entry for one alert or generated signal."""

    strategy_id: str | None
    status: WebhookStatus
    payload: dict[str, Any] = field(default_factory=dict)
    user_id: str | None = None
    error_message: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class GasFeeBalance:
    """Prepaid service-fee credit, one record per (user, environment)."""

    user_id: str
    environment: Environment
    balance: Decimal = Decimal("0")
    total_deposited: Decimal = Decimal("0")
    total_deducted: Decimal = Decimal("0")
    id: str = field(default_factory=new_id)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class GasFeeTransaction:
    """Ledger entry. Invariant: balance_after == balance_before + amount."""

    user_id: str
    environment: Environment
    amount: Decimal  # signed
    type: TransactionType
    balance_before: Decimal
    balance_after: Decimal
    description: str = ""
    trade_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ReferralCommission:
    """One payout to an ancestor referrer. At most one row per (trade, level)."""

    referrer_id: str  # beneficiary
    referred_id: str  # trading user whose profit generated the commission
    trade_id: str
    level: int
    gross_profit: Decimal
    rate: Decimal
    amount: Decimal
    status: CommissionStatus = CommissionStatus.PAID
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class AdminEarning:
    """Platform share of one settled trade: admin_share = total_fee - commissions_paid."""

    trade_id: str
    user_id: str
    gross_profit: Decimal
    total_fee: Decimal
    commissions_paid: Decimal
    admin_share: Decimal
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ProfitSettlement:
    """Idempotency record for profit sharing. At most one per trade id."""

    trade_id: str
    user_id: str
    environment: Environment
    gross_profit: Decimal
    fee_rate: Decimal
    fee_amount: Decimal
    net_profit: Decimal
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class Profile:
    """User profile. referrer_id is the id of the referring user's profile."""

    user_id: str
    referrer_id: str | None = None
    email: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class BotStatus:
    """Per-user run switch. venue None applies to every venue."""

    user_id: str
    environment: Environment
    is_running: bool = False
    venue: Venue | None = None
    id: str = field(default_factory=new_id)
