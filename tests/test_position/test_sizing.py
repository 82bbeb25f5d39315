"""Tests for PositionSizer.

Sizing precedence: fixed notional, then risk percent, then percent of balance.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from trader.exceptions import InsufficientSizeError
from trader.exchange.types import AccountBalance, VenueResponse
from trader.position.sizing import PositionSizer


@pytest.fixture
def sizer() -> PositionSizer:
    return PositionSizer()


class TestCalculateQuantity:
    def test_fixed_notional(self, sizer: PositionSizer, make_strategy) -> None:
        strategy = make_strategy(position_size_type="fixed", position_size_value="100")
        assert sizer.calculate_quantity(strategy, Decimal("50000")) == Decimal("0.002")

    def test_fixed_ignores_balance(self, sizer: PositionSizer, make_strategy) -> None:
        strategy = make_strategy(position_size_type="fixed", position_size_value="100")
        assert sizer.calculate_quantity(
            strategy, Decimal("50000"), Decimal("99999")
        ) == Decimal("0.002")

    def test_percent_of_balance(self, sizer: PositionSizer, make_strategy) -> None:
        strategy = make_strategy(position_size_type="percentage", position_size_value="10")
        # 1000 * 10% / 50 = 2
        assert sizer.calculate_quantity(strategy, Decimal("50"), Decimal("1000")) == Decimal("2")

    def test_risk_percent_takes_precedence_over_percent(
        self, sizer: PositionSizer, make_strategy
    ) -> None:
        strategy = make_strategy(
            position_size_type="percentage",
            position_size_value="10",
            stop_loss_percent="2",
            strategy_config={"risk_percent": "1"},
        )
        # risk 1% of 1000 = 10; stop distance 2% of 100 = 2; 10 / 2 = 5
        assert sizer.calculate_quantity(strategy, Decimal("100"), Decimal("1000")) == Decimal("5")

    def test_risk_percent_needs_stop_loss(self, sizer: PositionSizer, make_strategy) -> None:
        strategy = make_strategy(
            position_size_type="percentage",
            position_size_value="10",
            stop_loss_percent="0",
            strategy_config={"risk_percent": "1"},
        )
        assert not sizer.uses_risk_percent(strategy)
        assert sizer.calculate_quantity(strategy, Decimal("50"), Decimal("1000")) == Decimal("2")

    def test_non_positive_price_is_zero(self, sizer: PositionSizer, make_strategy) -> None:
        assert sizer.calculate_quantity(make_strategy(), Decimal("0")) == Decimal("0")

    def test_unknown_size_type_falls_back_to_percent(
        self, sizer: PositionSizer, make_strategy
    ) -> None:
        strategy = make_strategy(position_size_type="kelly", position_size_value="10")
        assert sizer.calculate_quantity(strategy, Decimal("50"), Decimal("1000")) == Decimal("2")


class TestResolveQuantity:
    @pytest.mark.asyncio
    async def test_fixed_does_not_fetch_balance(
        self, sizer: PositionSizer, make_strategy, venue_client: MagicMock
    ) -> None:
        quantity = await sizer.resolve_quantity(make_strategy(), Decimal("50000"), venue_client)
        assert quantity == Decimal("0.002")
        venue_client.fetch_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_percent_uses_total_balance(
        self, sizer: PositionSizer, make_strategy, venue_client: MagicMock
    ) -> None:
        venue_client.fetch_balance.return_value = VenueResponse.success(
            AccountBalance(available=Decimal("200"), total=Decimal("1000"))
        )
        strategy = make_strategy(position_size_type="percentage", position_size_value="10")
        quantity = await sizer.resolve_quantity(strategy, Decimal("50"), venue_client)
        assert quantity == Decimal("2")

    @pytest.mark.asyncio
    async def test_balance_fetch_failure_raises(
        self, sizer: PositionSizer, make_strategy, venue_client: MagicMock
    ) -> None:
        venue_client.fetch_balance.return_value = VenueResponse.transport_error("timeout")
        strategy = make_strategy(position_size_type="percentage", position_size_value="10")
        with pytest.raises(InsufficientSizeError, match="Failed to fetch balance"):
            await sizer.resolve_quantity(strategy, Decimal("50"), venue_client)

    @pytest.mark.asyncio
    async def test_zero_quantity_raises(
        self, sizer: PositionSizer, make_strategy, venue_client: MagicMock
    ) -> None:
        venue_client.fetch_balance.return_value = VenueResponse.success(AccountBalance())
        strategy = make_strategy(position_size_type="percentage", position_size_value="10")
        with pytest.raises(InsufficientSizeError, match="Invalid position size"):
            await sizer.resolve_quantity(strategy, Decimal("50"), venue_client)
