"""Profit-sharing settlement: service fee, referral cascade and admin earnings.

Settling a profitable trade:
  1. fee = gross * service_fee_rate, net = gross - fee
  2. record a ProfitSettlement (the idempotency record for the trade)
  3. deduct the fee from the trader's gas-fee balance
  4. walk the referral chain (up to len(referral_rates) levels) and credit
     gross * rate[level] to each referrer with a paid commission row
  5. record an AdminEarning with admin_share = fee - commissions paid

The check for an existing settlement and the writes that follow run under a
per-trade lock, so a trade id is settled at most once per process. The
settlement row is written before any money moves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from trader.concurrency import KeyedLocks
from trader.config import ProfitSharingSettings
from trader.logging import get_logger
from trader.models import (
    AdminEarning,
    CommissionStatus,
    Environment,
    ProfitSettlement,
    ReferralCommission,
    TransactionType,
)
from trader.pnl.ledger import GasFeeLedger

if TYPE_CHECKING:
    from trader.data.store import TradingStore

logger = get_logger(__name__)


@dataclass
class SettlementResult:
    """Outcome of settle(). settled is False for no-ops (reason says why)."""

    settled: bool
    trade_id: str
    reason: str = ""
    fee: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")
    commissions: list[ReferralCommission] = field(default_factory=list)
    admin_share: Decimal = Decimal("0")

    @property
    def commissions_paid(self) -> Decimal:
        return sum((c.amount for c in self.commissions), Decimal("0"))


class ProfitSharingEngine:
    """Converts realized profit into fee, commissions and admin earnings.

    Args:
        store: Trading store.
        ledger: Gas-fee ledger used for every balance mutation.
        settings: Fee and referral rates.
        locks: Shared keyed locks; a private instance is used when omitted.
    """

    def __init__(
        self,
        store: TradingStore,
        ledger: GasFeeLedger,
        settings: ProfitSharingSettings,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._settings = settings
        self._locks = locks or KeyedLocks()

    async def referral_chain(self, user_id: str) -> list[str]:
        """Return beneficiary user ids, level 1 first.

        Stops at the first missing link, at a cycle, or after as many levels
        as there are configured referral rates.
        """
        max_levels = len(self._settings.referral_rates)
        profile = await self._store.get_profile_by_user(user_id)
        if profile is None:
            return []

        chain: list[str] = []
        seen = {profile.id}
        while profile.referrer_id and len(chain) < max_levels:
            referrer = await self._store.get_profile(profile.referrer_id)
            if referrer is None or referrer.id in seen:
                break
            seen.add(referrer.id)
            chain.append(referrer.user_id)
            profile = referrer
        return chain

    async def settle(
        self,
        user_id: str,
        trade_id: str,
        gross_profit: Decimal,
        environment: Environment,
    ) -> SettlementResult:
        """Settle one profitable trade. Re-invoking for the same trade id is a no-op."""
        if gross_profit <= 0:
            return SettlementResult(settled=False, trade_id=trade_id, reason="not_profitable")

        async with self._locks.hold(("settle", trade_id)):
            if await self._store.get_settlement(trade_id) is not None:
                logger.debug("settlement_exists", trade_id=trade_id)
                return SettlementResult(settled=False, trade_id=trade_id, reason="already_settled")

            fee_rate = self._settings.service_fee_rate
            fee = gross_profit * fee_rate
            net_profit = gross_profit - fee

            await self._store.add_settlement(
                ProfitSettlement(
                    trade_id=trade_id,
                    user_id=user_id,
                    environment=environment,
                    gross_profit=gross_profit,
                    fee_rate=fee_rate,
                    fee_amount=fee,
                    net_profit=net_profit,
                )
            )
            await self._ledger.apply(
                user_id,
                environment,
                -fee,
                TransactionType.SERVICE_FEE,
                "Service fee for profitable trade",
                trade_id=trade_id,
            )

            commissions: list[ReferralCommission] = []
            chain = await self.referral_chain(user_id)
            for level, beneficiary in enumerate(chain, start=1):
                rate = self._settings.referral_rates[level - 1]
                amount = gross_profit * rate
                if amount <= 0:
                    continue
                await self._ledger.apply(
                    beneficiary,
                    environment,
                    amount,
                    TransactionType.REFERRAL_COMMISSION,
                    f"Referral commission (level {level})",
                    trade_id=trade_id,
                )
                commission = await self._store.add_commission(
                    ReferralCommission(
                        referrer_id=beneficiary,
                        referred_id=user_id,
                        trade_id=trade_id,
                        level=level,
                        gross_profit=gross_profit,
                        rate=rate,
                        amount=amount,
                        status=CommissionStatus.PAID,
                    )
                )
                commissions.append(commission)

            result = SettlementResult(
                settled=True,
                trade_id=trade_id,
                fee=fee,
                net_profit=net_profit,
                commissions=commissions,
            )
            result.admin_share = fee - result.commissions_paid
            await self._store.add_admin_earning(
                AdminEarning(
                    trade_id=trade_id,
                    user_id=user_id,
                    gross_profit=gross_profit,
                    total_fee=fee,
                    commissions_paid=result.commissions_paid,
                    admin_share=result.admin_share,
                )
            )

        logger.info(
            "profit_settled",
            trade_id=trade_id,
            user_id=user_id,
            gross_profit=str(gross_profit),
            fee=str(fee),
            commissions_paid=str(result.commissions_paid),
            admin_share=str(result.admin_share),
            levels=len(commissions),
        )
        return result
