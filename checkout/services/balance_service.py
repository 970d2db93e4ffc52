# checkout/services/balance_service.py
import threading
from decimal import Decimal

from checkout.services.wallet_client import BalanceClient
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class UserBalance:
    """
    Local view of the user's ledger token balance.

    Written only by settlement (optimistic debit, always followed by a
    refresh) and by explicit refreshes of the authoritative value.
    """

    def __init__(self, user_id: str, balance_client: BalanceClient | None = None, initial: Decimal = Decimal("0")):
        self.user_id = user_id
        self.balance_client = balance_client
        self._value = Decimal(initial)
        self._lock = threading.Lock()

    @property
    def value(self) -> Decimal:
        return self._value

    def refresh(self) -> Decimal:
        if self.balance_client is None:
            return self._value
        fresh = self.balance_client.fetch_balance(self.user_id)
        with self._lock:
            self._value = fresh
        logger.info(f"Balance of user {self.user_id} is {fresh}")
        return fresh

    def debit(self, amount: Decimal) -> Decimal:
        with self._lock:
            self._value = self._value - amount
            return self._value

    def set(self, value: Decimal) -> None:
        with self._lock:
            self._value = Decimal(value)
