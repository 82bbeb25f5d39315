"""Pre-trade admission control for alerts and generated signals.

Ordered checks, each rejecting with a human-readable reason:
  1. Trading-session window (UTC, overnight wraparound)
  2. Daily trade count for the trigger source
  3. Daily realized-PnL floor
  4. Consecutive-loss streak, with optional cooldown
  5. Max concurrent open positions for the owner
  6. Spread / signal-to-mid slippage caps (best bid/ask)
  7. Volume confirmation (when required) and minimum confidence
  8. Advisory filter, with an explicit policy for unavailability

Checks 1-5 concern the strategy and its owner (admit); 6-8 concern one
signal (screen). Rejections are returned, never raised, and are terminal
for that signal within the current cycle.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from trader.logging import get_logger
from trader.models import TriggerSource, WebhookStatus, utc_now
from trader.risk.advisory import AdvisoryDecision, AdvisoryPolicy, SignalAdvisor
from trader.risk.session import is_within_session
from trader.strategy import StrategyConfig

if TYPE_CHECKING:
    from trader.data.store import TradingStore
    from trader.market_data.gateway import MarketDataGateway
    from trader.signals.models import Signal

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


def day_start(now: datetime) -> datetime:
    """UTC midnight of now's day."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class RiskDecision:
    """Outcome of a gate evaluation.

    status is the audit status to record when not approved: "rejected" for
    strategy and market checks, "filtered" for signal-quality checks. note
    carries informational text for approved signals (e.g. advisory fallback).
    """

    approved: bool
    reason: str = ""
    status: WebhookStatus | None = None
    advisory: AdvisoryDecision | None = None
    note: str = ""

    @classmethod
    def approve(cls, advisory: AdvisoryDecision | None = None, note: str = "") -> RiskDecision:
        return cls(approved=True, advisory=advisory, note=note)

    @classmethod
    def reject(
        cls,
        reason: str,
        status: WebhookStatus = WebhookStatus.REJECTED,
        advisory: AdvisoryDecision | None = None,
    ) -> RiskDecision:
        return cls(approved=False, reason=reason, status=status, advisory=advisory)


class RiskGate:
    """Evaluates strategies and signals against risk rules.

    Args:
        store: Trading store used for trade history and open positions.
        gateway: Market data gateway for best bid/ask. None disables
            spread/slippage checks.
        advisor: Optional advisory filter. None disables check 8.
        advisory_policy: Behaviour when the advisor is unreachable.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: TradingStore,
        gateway: MarketDataGateway | None = None,
        advisor: SignalAdvisor | None = None,
        advisory_policy: AdvisoryPolicy = AdvisoryPolicy.FAIL_OPEN,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._advisor = advisor
        self._advisory_policy = advisory_policy
        self._clock = clock

    # ──────────────────────────────────────────────
    # Individual checks
    # ──────────────────────────────────────────────

    def check_session(self, strategy: StrategyConfig, now: datetime) -> tuple[bool, str]:
        if not is_within_session(strategy.risk.session_start, strategy.risk.session_end, now):
            return False, "Outside trading session"
        return True, ""

    async def check_trade_history(
        self, strategy: StrategyConfig, trigger: TriggerSource, now: datetime
    ) -> tuple[bool, str]:
        """Daily trade cap, daily loss floor and consecutive-loss streak.

        Returns:
            Tuple of (allowed, reason). If allowed is True, reason is "".
        """
        risk = strategy.risk
        trades = await self._store.list_trades(strategy.user_id)  # newest first
        since = day_start(now)
        todays = [t for t in trades if t.created_at >= since]

        if risk.max_trades_per_day > 0:
            count = sum(1 for t in todays if t.triggered_by is trigger)
            if count >= risk.max_trades_per_day:
                return False, "Max trades per day reached"

        if risk.max_daily_loss > 0:
            daily_pnl = sum((t.realized_pnl or Decimal("0") for t in todays), Decimal("0"))
            if daily_pnl <= -risk.max_daily_loss:
                return False, "Max daily loss reached"

        if risk.max_consecutive_losses > 0:
            streak = 0
            last_loss_at: datetime | None = None
            for trade in trades:
                if trade.realized_pnl is None:
                    continue
                if trade.realized_pnl < 0:
                    streak += 1
                    if last_loss_at is None:
                        last_loss_at = trade.created_at
                elif trade.realized_pnl > 0:
                    break
            if streak >= risk.max_consecutive_losses:
                if risk.cooldown_minutes <= 0 or last_loss_at is None:
                    return False, "Max consecutive losses reached"
                if now - last_loss_at < timedelta(minutes=risk.cooldown_minutes):
                    return False, "Cooldown active after loss streak"

        return True, ""

    async def check_open_positions(self, strategy: StrategyConfig) -> tuple[bool, str]:
        if strategy.max_positions <= 0:
            return True, ""
        count = await self._store.count_open_positions(strategy.user_id)
        if count >= strategy.max_positions:
            return False, "Max positions reached"
        return True, ""

    async def check_market(
        self, strategy: StrategyConfig, symbol: str, price: Decimal | None
    ) -> tuple[bool, str]:
        """Spread and slippage caps against the current best bid/ask.

        An unavailable book passes; slippage is only checked with a price.
        """
        risk = strategy.risk
        if self._gateway is None or (
            risk.max_spread_percent <= 0 and risk.max_slippage_percent <= 0
        ):
            return True, ""

        book = await self._gateway.fetch_book_ticker(
            strategy.venue, strategy.product, symbol, strategy.is_testnet
        )
        if book is None:
            return True, ""

        mid = book.mid
        spread = (book.ask - book.bid) / mid * _HUNDRED
        slippage = abs(price - mid) / mid * _HUNDRED if price else Decimal("0")
        if risk.max_spread_percent > 0 and spread > risk.max_spread_percent:
            logger.info("spread_too_high", symbol=symbol, spread_percent=str(spread))
            return False, "Spread too high"
        if risk.max_slippage_percent > 0 and slippage > risk.max_slippage_percent:
            logger.info("slippage_too_high", symbol=symbol, slippage_percent=str(slippage))
            return False, "Slippage too high"
        return True, ""

    def check_signal_quality(self, strategy: StrategyConfig, signal: Signal) -> tuple[bool, str]:
        if strategy.risk.require_volume_confirmed and not signal.indicators.volume_confirmed:
            return False, "Volume not confirmed"
        if signal.confidence < strategy.risk.min_confidence:
            return False, "Confidence below threshold"
        return True, ""

    async def consult_advisor(self, strategy: StrategyConfig, signal: Signal) -> RiskDecision:
        if self._advisor is None:
            return RiskDecision.approve()

        decision = await self._advisor.review(signal, strategy.indicators)
        if decision.available:
            if decision.execute and decision.confidence >= strategy.risk.min_confidence:
                return RiskDecision.approve(advisory=decision)
            return RiskDecision.reject(
                decision.reason or "Advisory filter rejected signal",
                status=WebhookStatus.FILTERED,
                advisory=decision,
            )

        logger.warning(
            "advisory_unavailable",
            strategy_id=strategy.id,
            symbol=signal.symbol,
            reason=decision.reason,
            policy=self._advisory_policy.value,
        )
        if self._advisory_policy is AdvisoryPolicy.FAIL_CLOSED:
            return RiskDecision.reject(
                f"Advisory unavailable: {decision.reason or 'unknown_error'}",
                status=WebhookStatus.FILTERED,
            )
        return RiskDecision.approve(
            note=f"Gemini unavailable: {decision.reason or 'unknown_error'}"
        )

    # ──────────────────────────────────────────────
    # Composite evaluations
    # ──────────────────────────────────────────────

    async def admit(
        self,
        strategy: StrategyConfig,
        trigger: TriggerSource,
        now: datetime | None = None,
    ) -> RiskDecision:
        """Strategy-level checks 1-5."""
        now = now or self._clock()

        allowed, reason = self.check_session(strategy, now)
        if allowed:
            allowed, reason = await self.check_trade_history(strategy, trigger, now)
        if allowed:
            allowed, reason = await self.check_open_positions(strategy)

        if not allowed:
            logger.info(
                "risk_rejected",
                strategy_id=strategy.id,
                trigger=trigger.value,
                reason=reason,
            )
            return RiskDecision.reject(reason)
        return RiskDecision.approve()

    async def screen(self, strategy: StrategyConfig, signal: Signal) -> RiskDecision:
        """Signal-level checks 6-8 for a generated signal."""
        allowed, reason = await self.check_market(strategy, signal.symbol, signal.price)
        if not allowed:
            logger.info(
                "signal_rejected",
                strategy_id=strategy.id,
                symbol=signal.symbol,
                reason=reason,
            )
            return RiskDecision.reject(reason)

        allowed, reason = self.check_signal_quality(strategy, signal)
        if not allowed:
            logger.info(
                "signal_filtered",
                strategy_id=strategy.id,
                symbol=signal.symbol,
                confidence=str(signal.confidence),
                reason=reason,
            )
            return RiskDecision.reject(reason, status=WebhookStatus.FILTERED)
        return await self.consult_advisor(strategy, signal)

    async def evaluate(
        self,
        strategy: StrategyConfig,
        trigger: TriggerSource,
        signal: Signal,
        now: datetime | None = None,
    ) -> RiskDecision:
        """Run every check in order for one signal."""
        decision = await self.admit(strategy, trigger, now)
        if not decision.approved:
            return decision
        return await self.screen(strategy, signal)
