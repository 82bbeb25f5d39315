"""Typed read/write abstraction over the keyed-record repository.

Provides TradingStore with typed methods for every pipeline entity. All
record encoding goes through trader.data.records; strategy records are
returned as raw dicts and turned into StrategyConfig by the caller.

CRITICAL: All monetary values are stored as strings, restored as Decimal on read.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from trader.data.records import from_record, to_record
from trader.data.repository import Repository
from trader.logging import get_logger
from trader.models import (
    AdminEarning,
    BotStatus,
    Environment,
    GasFeeBalance,
    GasFeeTransaction,
    Position,
    Profile,
    ProfitSettlement,
    ReferralCommission,
    Trade,
    TradeStatus,
    TriggerSource,
    Venue,
    WebhookLog,
    utc_now,
)

logger = get_logger(__name__)

STRATEGIES = "trading_strategies"
API_KEYS = "api_keys"
TRADES = "trades"
POSITIONS = "positions"
WEBHOOK_LOGS = "webhook_logs"
GAS_FEE_BALANCES = "gas_fee_balances"
GAS_FEE_TRANSACTIONS = "gas_fee_transactions"
REFERRAL_COMMISSIONS = "referral_commissions"
ADMIN_EARNINGS = "admin_earnings"
PROFIT_SETTLEMENTS = "profit_settlements"
PROFILES = "profiles"
BOT_STATUS = "bot_status"


class TradingStore:
    """Typed access to pipeline records.

    Usage:
        store = TradingStore(InMemoryRepository())
        await store.add_trade(trade)
        trades = await store.list_trades(user_id, since=day_start)
    """

    def __init__(self, repository: Repository) -> None:
        self._repository = repository

    @property
    def repository(self) -> Repository:
        return self._repository

    # ──────────────────────────────────────────────
    # Strategies
    # ──────────────────────────────────────────────

    async def add_strategy_record(self, record: dict[str, Any]) -> dict[str, Any]:
        return await self._repository.insert(STRATEGIES, record)

    async def get_strategy_record(self, strategy_id: str) -> dict[str, Any] | None:
        return await self._repository.get(STRATEGIES, strategy_id)

    async def find_strategy_by_secret(self, secret: str) -> dict[str, Any] | None:
        if not secret:
            return None
        return await self._repository.find_one(STRATEGIES, {"webhook_secret": secret})

    async def list_active_strategy_records(self) -> list[dict[str, Any]]:
        return await self._repository.find(STRATEGIES, {"is_active": True})

    async def mark_signal_time(self, strategy_id: str, at: datetime) -> None:
        """Record when the strategy last executed a generated signal."""
        await self._repository.update(STRATEGIES, strategy_id, {"last_signal_at": at.isoformat()})

    # ──────────────────────────────────────────────
    # Trades
    # ──────────────────────────────────────────────

    async def add_trade(self, trade: Trade) -> Trade:
        await self._repository.insert(TRADES, to_record(trade))
        return trade

    async def get_trade(self, trade_id: str) -> Trade | None:
        record = await self._repository.get(TRADES, trade_id)
        return from_record(Trade, record) if record is not None else None

    async def list_trades(
        self,
        user_id: str,
        since: datetime | None = None,
        triggered_by: TriggerSource | None = None,
    ) -> list[Trade]:
        """Return the user's trades, newest first.

        Args:
            user_id: Trade owner.
            since: Only trades created at or after this instant.
            triggered_by: Only trades from this trigger source.
        """
        where: dict[str, Any] = {"user_id": user_id}
        if triggered_by is not None:
            where["triggered_by"] = triggered_by.value
        records = await self._repository.find(TRADES, where, order_by="created_at", descending=True)
        trades = [from_record(Trade, r) for r in records]
        if since is not None:
            trades = [t for t in trades if t.created_at >= since]
        return trades

    async def list_profitable_filled_trades(self) -> list[Trade]:
        """Filled trades with positive realized PnL, oldest first."""
        records = await self._repository.find(
            TRADES, {"status": TradeStatus.FILLED.value}, order_by="created_at"
        )
        trades = [from_record(Trade, r) for r in records]
        return [t for t in trades if t.realized_pnl is not None and t.realized_pnl > 0]

    # ──────────────────────────────────────────────
    # Positions
    # ──────────────────────────────────────────────

    async def add_position(self, position: Position) -> Position:
        await self._repository.insert(POSITIONS, to_record(position))
        return position

    async def save_position(self, position: Position) -> None:
        position.updated_at = utc_now()
        await self._repository.update(POSITIONS, position.id, to_record(position))

    async def get_position(self, position_id: str) -> Position | None:
        record = await self._repository.get(POSITIONS, position_id)
        return from_record(Position, record) if record is not None else None

    async def list_open_positions(self, user_id: str | None = None) -> list[Position]:
        where: dict[str, Any] = {"is_open": True}
        if user_id is not None:
            where["user_id"] = user_id
        records = await self._repository.find(POSITIONS, where, order_by="created_at")
        return [from_record(Position, r) for r in records]

    async def count_open_positions(self, user_id: str) -> int:
        return len(await self._repository.find(POSITIONS, {"is_open": True, "user_id": user_id}))

    async def find_open_position(
        self, user_id: str, symbol: str, venue: Venue, environment: Environment
    ) -> Position | None:
        """Most recent open position for the user on symbol, venue and environment."""
        records = await self._repository.find(
            POSITIONS,
            {
                "is_open": True,
                "user_id": user_id,
                "symbol": symbol,
                "venue": venue.value,
                "environment": environment.value,
            },
            order_by="created_at",
            descending=True,
            limit=1,
        )
        return from_record(Position, records[0]) if records else None

    # ──────────────────────────────────────────────
    # Audit trail
    # ──────────────────────────────────────────────

    async def add_webhook_log(self, log: WebhookLog) -> WebhookLog:
        await self._repository.insert(WEBHOOK_LOGS, to_record(log))
        return log

    async def list_webhook_logs(self, strategy_id: str | None = None) -> list[WebhookLog]:
        where = {"strategy_id": strategy_id} if strategy_id is not None else None
        records = await self._repository.find(WEBHOOK_LOGS, where, order_by="created_at")
        return [from_record(WebhookLog, r) for r in records]

    # ──────────────────────────────────────────────
    # Gas-fee ledger
    # ──────────────────────────────────────────────

    async def get_gas_balance(self, user_id: str, environment: Environment) -> GasFeeBalance | None:
        record = await self._repository.find_one(
            GAS_FEE_BALANCES, {"user_id": user_id, "environment": environment.value}
        )
        return from_record(GasFeeBalance, record) if record is not None else None

    async def add_gas_balance(self, balance: GasFeeBalance) -> GasFeeBalance:
        await self._repository.insert(GAS_FEE_BALANCES, to_record(balance))
        return balance

    async def save_gas_balance(self, balance: GasFeeBalance) -> None:
        await self._repository.update(GAS_FEE_BALANCES, balance.id, to_record(balance))

    async def add_gas_transaction(self, transaction: GasFeeTransaction) -> GasFeeTransaction:
        await self._repository.insert(GAS_FEE_TRANSACTIONS, to_record(transaction))
        return transaction

    async def list_gas_transactions(
        self, user_id: str, environment: Environment | None = None
    ) -> list[GasFeeTransaction]:
        where: dict[str, Any] = {"user_id": user_id}
        if environment is not None:
            where["environment"] = environment.value
        records = await self._repository.find(GAS_FEE_TRANSACTIONS, where, order_by="created_at")
        return [from_record(GasFeeTransaction, r) for r in records]

    # ──────────────────────────────────────────────
    # Profit sharing
    # ──────────────────────────────────────────────

    async def get_settlement(self, trade_id: str) -> ProfitSettlement | None:
        record = await self._repository.find_one(PROFIT_SETTLEMENTS, {"trade_id": trade_id})
        return from_record(ProfitSettlement, record) if record is not None else None

    async def add_settlement(self, settlement: ProfitSettlement) -> ProfitSettlement:
        await self._repository.insert(PROFIT_SETTLEMENTS, to_record(settlement))
        return settlement

    async def add_commission(self, commission: ReferralCommission) -> ReferralCommission:
        await self._repository.insert(REFERRAL_COMMISSIONS, to_record(commission))
        return commission

    async def list_commissions(self, trade_id: str | None = None) -> list[ReferralCommission]:
        where = {"trade_id": trade_id} if trade_id is not None else None
        records = await self._repository.find(REFERRAL_COMMISSIONS, where, order_by="level")
        return [from_record(ReferralCommission, r) for r in records]

    async def add_admin_earning(self, earning: AdminEarning) -> AdminEarning:
        await self._repository.insert(ADMIN_EARNINGS, to_record(earning))
        return earning

    async def list_admin_earnings(self, trade_id: str | None = None) -> list[AdminEarning]:
        where = {"trade_id": trade_id} if trade_id is not None else None
        records = await self._repository.find(ADMIN_EARNINGS, where, order_by="created_at")
        return [from_record(AdminEarning, r) for r in records]

    # ──────────────────────────────────────────────
    # Profiles and bot status
    # ──────────────────────────────────────────────

    async def add_profile(self, profile: Profile) -> Profile:
        await self._repository.insert(PROFILES, to_record(profile))
        return profile

    async def get_profile(self, profile_id: str) -> Profile | None:
        record = await self._repository.get(PROFILES, profile_id)
        return from_record(Profile, record) if record is not None else None

    async def get_profile_by_user(self, user_id: str) -> Profile | None:
        record = await self._repository.find_one(PROFILES, {"user_id": user_id})
        return from_record(Profile, record) if record is not None else None

    async def add_bot_status(self, status: BotStatus) -> BotStatus:
        await self._repository.insert(BOT_STATUS, to_record(status))
        return status

    async def is_bot_running(self, user_id: str, environment: Environment, venue: Venue) -> bool:
        """True if a running bot status exists for the venue, or for all venues."""
        records = await self._repository.find(
            BOT_STATUS,
            {
                "user_id": user_id,
                "environment": environment.value,
                "is_running": True,
                "venue": [venue.value, None],
            },
        )
        return bool(records)

    async def gas_balance_amount(self, user_id: str, environment: Environment) -> Decimal:
        balance = await self.get_gas_balance(user_id, environment)
        return balance.balance if balance is not None else Decimal("0")
