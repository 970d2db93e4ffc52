# checkout/services/discount_service.py
import threading
from decimal import Decimal
from typing import Iterable, List

from checkout.domain.schemas import Amounts, DiscountToken, LineItem
from checkout.services.amounts import compute_amounts
from checkout.services.wallet_client import RewardClient
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class DiscountSelector:
    """
    At most one active discount token per checkout.

    Selecting the active token again clears it; selecting another one
    replaces it. The percent is applied identically to fiat and tokens.
    """

    def __init__(self, user_id: str, reward_client: RewardClient | None = None):
        self.user_id = user_id
        self.reward_client = reward_client
        self._owned: List[DiscountToken] = []
        self._active: DiscountToken | None = None
        self._lock = threading.Lock()

    @property
    def owned(self) -> List[DiscountToken]:
        with self._lock:
            return list(self._owned)

    @property
    def active(self) -> DiscountToken | None:
        return self._active

    @property
    def percent(self) -> Decimal:
        active = self._active
        return active.discount_percent if active else Decimal("0")

    def refresh_owned(self) -> List[DiscountToken]:
        if self.reward_client is None:
            return self.owned
        payload = self.reward_client.fetch_user_tokens(self.user_id)
        tokens = [DiscountToken.from_payload(p, owner_id=self.user_id) for p in payload]
        with self._lock:
            self._owned = tokens
            #a token that left the wallet cannot stay selected
            if self._active and all(t.token_id != self._active.token_id for t in tokens):
                self._active = None
        return list(tokens)

    def set_owned(self, tokens: Iterable[DiscountToken]) -> None:
        with self._lock:
            self._owned = list(tokens)

    def toggle(self, token: DiscountToken | str) -> DiscountToken | None:
        with self._lock:
            if isinstance(token, str):
                token = self._find(token)
            if token.owner_id != self.user_id:
                raise ValueError("Discount token belongs to another user")

            if self._active and self._active.token_id == token.token_id:
                self._active = None
                logger.info(f"Discount {token.token_id} removed for user {self.user_id}")
            else:
                self._active = token
                logger.info(
                    f"Discount {token.token_id} ({token.discount_percent}%) applied for user {self.user_id}"
                )
            return self._active

    def clear(self) -> None:
        with self._lock:
            self._active = None

    def amounts_for(self, items: Iterable[LineItem]) -> Amounts:
        return compute_amounts(items, self.percent)

    def _find(self, token_id: str) -> DiscountToken:
        for t in self._owned:
            if t.token_id == token_id:
                return t
        raise ValueError(f"Unknown discount token {token_id}")
