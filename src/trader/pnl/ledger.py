"""Gas-fee balance ledger.

Every balance mutation goes through GasFeeLedger.apply, which writes the
updated GasFeeBalance and exactly one GasFeeTransaction whose
balance_after == balance_before + amount. Mutations for one
(user, environment) are serialized with a keyed lock.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from trader.concurrency import KeyedLocks
from trader.logging import get_logger
from trader.models import (
    Environment,
    GasFeeBalance,
    GasFeeTransaction,
    TransactionType,
    utc_now,
)

if TYPE_CHECKING:
    from trader.data.store import TradingStore

logger = get_logger(__name__)

#: Transaction types accepted by deposit().
DEPOSIT_TYPES = frozenset(
    {TransactionType.DEPOSIT, TransactionType.DEMO_DEPOSIT, TransactionType.REFUND}
)


class GasFeeLedger:
    """Applies signed amounts to per-user, per-environment gas-fee balances.

    Args:
        store: Trading store holding balances and transactions.
        locks: Shared keyed locks; a private instance is used when omitted.
    """

    def __init__(self, store: TradingStore, locks: KeyedLocks | None = None) -> None:
        self._store = store
        self._locks = locks or KeyedLocks()

    @staticmethod
    def _lock_key(user_id: str, environment: Environment) -> tuple[str, str, str]:
        return ("balance", user_id, environment.value)

    async def _get_or_create(self, user_id: str, environment: Environment) -> GasFeeBalance:
        balance = await self._store.get_gas_balance(user_id, environment)
        if balance is None:
            balance = await self._store.add_gas_balance(
                GasFeeBalance(user_id=user_id, environment=environment)
            )
            logger.debug("gas_balance_created", user_id=user_id, environment=environment.value)
        return balance

    async def get_or_create(self, user_id: str, environment: Environment) -> GasFeeBalance:
        """Return the balance record, creating an empty one on first reference."""
        async with self._locks.hold(self._lock_key(user_id, environment)):
            return await self._get_or_create(user_id, environment)

    async def apply(
        self,
        user_id: str,
        environment: Environment,
        amount: Decimal,
        transaction_type: TransactionType,
        description: str = "",
        trade_id: str | None = None,
    ) -> GasFeeTransaction:
        """Add a signed amount to the balance and record the transaction.

        Positive amounts count towards total_deposited, negative amounts
        towards total_deducted.

        Returns:
            The recorded transaction.
        """
        async with self._locks.hold(self._lock_key(user_id, environment)):
            balance = await self._get_or_create(user_id, environment)
            before = balance.balance
            after = before + amount

            balance.balance = after
            if amount > 0:
                balance.total_deposited += amount
            elif amount < 0:
                balance.total_deducted += -amount
            balance.updated_at = utc_now()
            await self._store.save_gas_balance(balance)

            transaction = await self._store.add_gas_transaction(
                GasFeeTransaction(
                    user_id=user_id,
                    environment=environment,
                    amount=amount,
                    type=transaction_type,
                    balance_before=before,
                    balance_after=after,
                    description=description,
                    trade_id=trade_id,
                )
            )

        logger.info(
            "gas_balance_updated",
            user_id=user_id,
            environment=environment.value,
            type=transaction_type.value,
            amount=str(amount),
            balance_before=str(before),
            balance_after=str(after),
            trade_id=trade_id,
        )
        return transaction

    async def deposit(
        self,
        user_id: str,
        environment: Environment,
        amount: Decimal,
        transaction_type: TransactionType = TransactionType.DEPOSIT,
        description: str = "Deposit",
    ) -> GasFeeTransaction:
        """Credit a deposit, demo deposit or refund.

        Raises:
            ValueError: If amount is not positive or the type is not a deposit type.
        """
        if amount <= 0:
            raise ValueError(f"Deposit amount must be positive, got {amount}")
        if transaction_type not in DEPOSIT_TYPES:
            raise ValueError(f"Not a deposit transaction type: {transaction_type.value}")
        return await self.apply(user_id, environment, amount, transaction_type, description)
