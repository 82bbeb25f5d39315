"""Position reconciliation against venue-reported state.

Each run:
  1. Backfill settlements for filled trades with positive realized PnL that
     were never settled (the engine's idempotency check guards re-runs)
  2. Group locally open positions by (owner, venue, environment) so each
     group needs one credential lookup and one venue client
  3. For every position fetch the venue state:
     - still open: refresh current price and unrealized PnL in place
     - flat: close the local record, append one closing Trade
       (trigger "position_monitor") and settle it when profitable
     - fetch failed: leave the position untouched until the next run

A group without credentials is skipped and logged, never treated as closed.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from trader.concurrency import KeyedLocks
from trader.exchange.types import VenuePosition, VenueTarget
from trader.logging import get_logger, unit_context
from trader.models import (
    Environment,
    Position,
    ProductType,
    Trade,
    TradeStatus,
    TriggerSource,
    Venue,
    utc_now,
)

if TYPE_CHECKING:
    from trader.data.credentials import CredentialStore
    from trader.data.store import TradingStore
    from trader.exchange.client import VenueClient
    from trader.exchange.factory import VenueClientFactory
    from trader.pnl.profit_sharing import ProfitSharingEngine

logger = get_logger(__name__)

#: Result-item trigger labels; other sources report their own value.
_TRIGGER_LABELS = {TriggerSource.POSITION_MONITOR: "exchange_close"}


class PositionReconciler:
    """Keeps local positions in line with the venues.

    Args:
        store: Trading store.
        credentials: Credential store for venue API keys.
        client_factory: Builds a VenueClient for a target and credentials.
        profit_sharing: Settlement engine for realized profit.
        locks: Shared keyed locks; a private instance is used when omitted.
    """

    def __init__(
        self,
        store: TradingStore,
        credentials: CredentialStore,
        client_factory: VenueClientFactory,
        profit_sharing: ProfitSharingEngine,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._client_factory = client_factory
        self._profit_sharing = profit_sharing
        self._locks = locks or KeyedLocks()

    async def backfill_settlements(self) -> int:
        """Settle profitable filled trades that have no settlement yet."""
        settled = 0
        for trade in await self._store.list_profitable_filled_trades():
            if trade.realized_pnl is None:
                continue
            if await self._store.get_settlement(trade.id) is not None:
                continue
            result = await self._profit_sharing.settle(
                trade.user_id, trade.id, trade.realized_pnl, trade.environment
            )
            if result.settled:
                settled += 1
        if settled:
            logger.info("settlements_backfilled", count=settled)
        return settled

    async def run(self) -> dict[str, Any]:
        """Reconcile every open position once.

        Returns:
            Summary with monitored/closed/updated/settled counts, the list of
            closed-position results and a timestamp.
        """
        settled = await self.backfill_settlements()

        positions = await self._store.list_open_positions()
        groups: dict[tuple[str, Venue, Environment], list[Position]] = defaultdict(list)
        for position in positions:
            groups[(position.user_id, position.venue, position.environment)].append(position)

        summary: dict[str, Any] = {
            "monitored": len(positions),
            "closed": 0,
            "updated": 0,
            "settled": settled,
            "results": [],
        }
        for (user_id, venue, environment), group in groups.items():
            try:
                await self._reconcile_group(user_id, venue, environment, group, summary)
            except Exception as e:
                logger.error(
                    "reconcile_group_failed",
                    user_id=user_id,
                    venue=venue.value,
                    environment=environment.value,
                    error=str(e),
                    exc_info=True,
                )

        summary["timestamp"] = utc_now().isoformat()
        logger.info(
            "reconciliation_complete",
            monitored=summary["monitored"],
            closed=summary["closed"],
            updated=summary["updated"],
            settled=summary["settled"],
        )
        return summary

    async def _reconcile_group(
        self,
        user_id: str,
        venue: Venue,
        environment: Environment,
        positions: list[Position],
        summary: dict[str, Any],
    ) -> None:
        credentials = await self._credentials.get(
            user_id, venue, ProductType.FUTURES, environment
        )
        if credentials is None:
            logger.warning(
                "reconcile_credentials_missing",
                user_id=user_id,
                venue=venue.value,
                environment=environment.value,
                positions=len(positions),
            )
            return

        target = VenueTarget(venue, ProductType.FUTURES, environment)
        async with self._client_factory(target, credentials, None) as client:
            for position in positions:
                with unit_context(
                    strategy_id=position.strategy_id, symbol=position.symbol, venue=venue.value
                ):
                    await self._reconcile_position(client, position, summary)

    async def _reconcile_position(
        self, client: VenueClient, position: Position, summary: dict[str, Any]
    ) -> None:
        response = await client.fetch_position(position.symbol, position.side)
        if not response.ok:
            logger.warning(
                "venue_position_fetch_failed",
                position_id=position.id,
                symbol=position.symbol,
                error=response.error,
                failure=response.failure.value if response.failure else None,
            )
            return

        venue_position: VenuePosition = response.data
        if venue_position.is_open:
            if venue_position.mark_price > 0:
                position.current_price = venue_position.mark_price
                position.unrealized_pnl = venue_position.unrealized_pnl
                await self._store.save_position(position)
                summary["updated"] += 1
            return

        item = await self.close_position(position, venue_position)
        if item is not None:
            summary["closed"] += 1
            if item["settled"]:
                summary["settled"] += 1
            summary["results"].append(item)

    async def close_position(
        self,
        position: Position,
        venue_position: VenuePosition,
        trigger: TriggerSource = TriggerSource.POSITION_MONITOR,
        order_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Close the local record, append the closing trade and settle profit.

        Args:
            position: Local open position.
            venue_position: Last venue state; supplies exit price and realized PnL.
            trigger: Trigger source recorded on the closing trade.
            order_id: Venue order id of the closing order, if one was placed.

        Returns:
            Result item, or None if the position was already closed.
        """
        async with self._locks.hold(("position", position.id)):
            current = await self._store.get_position(position.id)
            if current is None or not current.is_open:
                return None

            # A flat venue position usually reports zero PnL; keep the last open value then
            realized = venue_position.unrealized_pnl or current.unrealized_pnl
            exit_price = (
                venue_position.mark_price
                if venue_position.mark_price > 0
                else current.current_price or current.entry_price
            )

            now = utc_now()
            current.is_open = False
            current.closed_at = now
            current.current_price = exit_price
            current.unrealized_pnl = Decimal("0")
            await self._store.save_position(current)

            trade = await self._store.add_trade(
                Trade(
                    user_id=current.user_id,
                    venue=current.venue,
                    environment=current.environment,
                    symbol=current.symbol,
                    side=current.side.closing_side,
                    price=exit_price,
                    quantity=current.size,
                    status=TradeStatus.FILLED,
                    triggered_by=trigger,
                    strategy_id=current.strategy_id,
                    order_id=order_id,
                    realized_pnl=realized,
                )
            )

        logger.info(
            "position_closed",
            position_id=current.id,
            trigger=trigger.value,
            symbol=current.symbol,
            trade_id=trade.id,
            realized_pnl=str(realized),
        )

        settled = False
        if realized > 0:
            result = await self._profit_sharing.settle(
                current.user_id, trade.id, realized, current.environment
            )
            settled = result.settled

        return {
            "position_id": current.id,
            "symbol": current.symbol,
            "status": "closed",
            "trigger": _TRIGGER_LABELS.get(trigger, trigger.value),
            "trade_id": trade.id,
            "realized_pnl": str(realized),
            "settled": settled,
        }
