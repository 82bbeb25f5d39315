"""Entry quantity calculation for a strategy.

All calculations use Decimal arithmetic exclusively -- no float conversions.
The raw quantity returned here is not rounded; the executor floors it while
walking the precision-retry ladder.

Sizing precedence:
1. Fixed notional: position_size_value / price
2. Risk percent (risk_percent > 0 and stop_loss_percent > 0):
   balance * risk_percent% / (price * stop_loss_percent%)
3. Percent of balance: balance * position_size_value% / price

Modes 2 and 3 fetch the account balance (total) from the venue.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from trader.exceptions import InsufficientSizeError
from trader.logging import get_logger
from trader.strategy import SizingMode, StrategyConfig

if TYPE_CHECKING:
    from trader.exchange.client import VenueClient

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


class PositionSizer:
    """Resolves the raw entry quantity for a strategy and reference price."""

    def calculate_quantity(
        self,
        strategy: StrategyConfig,
        price: Decimal,
        balance: Decimal = Decimal("0"),
    ) -> Decimal:
        """Compute the raw quantity for a given balance.

        Args:
            strategy: Strategy whose sizing mode and values apply.
            price: Entry reference price (must be positive).
            balance: Account balance in quote currency; ignored for fixed sizing.

        Returns:
            Raw (unrounded) quantity, zero when it cannot be sized.
        """
        if price <= 0:
            return Decimal("0")

        if strategy.sizing_mode is SizingMode.FIXED:
            return strategy.position_size_value / price

        if self.uses_risk_percent(strategy):
            risk_amount = balance * strategy.risk.risk_percent / _HUNDRED
            stop_distance = price * strategy.stop_loss_percent / _HUNDRED
            return risk_amount / stop_distance if stop_distance > 0 else Decimal("0")

        return balance * strategy.position_size_value / _HUNDRED / price

    @staticmethod
    def uses_risk_percent(strategy: StrategyConfig) -> bool:
        return strategy.risk.risk_percent > 0 and strategy.stop_loss_percent > 0

    async def resolve_quantity(
        self,
        strategy: StrategyConfig,
        price: Decimal,
        client: VenueClient,
    ) -> Decimal:
        """Compute the raw quantity, fetching the venue balance when needed.

        Raises:
            InsufficientSizeError: If the balance cannot be fetched or the
                resulting quantity is not positive.
        """
        balance = Decimal("0")
        if strategy.sizing_mode is not SizingMode.FIXED:
            result = await client.fetch_balance()
            if not result.ok:
                raise InsufficientSizeError(f"Failed to fetch balance: {result.error}")
            balance = result.data.total

        quantity = self.calculate_quantity(strategy, price, balance)
        if quantity <= 0:
            logger.warning(
                "position_size_not_positive",
                strategy_id=strategy.id,
                price=str(price),
                balance=str(balance),
                mode=strategy.sizing_mode.value,
            )
            raise InsufficientSizeError("Invalid position size calculated")
        return quantity
