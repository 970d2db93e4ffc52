# checkout/services/session_registry.py
import threading
from typing import Dict, List

from checkout.domain.schemas import CheckoutVariant, LineItem, WalletCapabilities
from checkout.services.cart_provider import SnapshotCart
from checkout.services.checkout_session import CheckoutServices, CheckoutSession
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class SessionRegistry:
    """Live checkout sessions of this process, one per user."""

    def __init__(self, services: CheckoutServices):
        self.services = services
        self._sessions: Dict[str, CheckoutSession] = {}
        self._lock = threading.Lock()

    def open(
        self,
        user_id: str,
        variant: CheckoutVariant = CheckoutVariant.CONSUMER,
        capabilities: WalletCapabilities | None = None,
        machine_id: str | None = None,
        machine_owner_id: str | None = None,
    ) -> CheckoutSession:
        with self._lock:
            session = self._sessions.get(user_id)
            if session is not None and session.variant == variant and not session.closed:
                if capabilities is not None:
                    session.capabilities = capabilities
                if machine_owner_id is not None:
                    session.machine_owner_id = machine_owner_id
                return session
            if session is not None:
                session.close()
            session = CheckoutSession(
                user_id,
                self.services,
                variant=variant,
                capabilities=capabilities,
                machine_id=machine_id,
                cart=SnapshotCart(),
                machine_owner_id=machine_owner_id,
            )
            self._sessions[user_id] = session
        session.start()
        logger.info(f"Checkout session opened for user {user_id} ({variant.value})")
        return session

    def get(self, user_id: str) -> CheckoutSession:
        with self._lock:
            return self._sessions[user_id]

    def set_cart(
        self,
        user_id: str,
        items: List[LineItem],
        variant: CheckoutVariant | None = None,
        capabilities: WalletCapabilities | None = None,
        machine_id: str | None = None,
        machine_owner_id: str | None = None,
    ) -> CheckoutSession:
        with self._lock:
            session = self._sessions.get(user_id)
        if session is None or (variant is not None and variant != session.variant):
            session = self.open(
                user_id, variant or CheckoutVariant.CONSUMER, capabilities, machine_id, machine_owner_id
            )
        elif capabilities is not None:
            session.capabilities = capabilities
        session.cart.replace(items)
        return session

    def sessions(self) -> List[CheckoutSession]:
        with self._lock:
            return list(self._sessions.values())

    def close(self, user_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions, self._sessions = list(self._sessions.values()), {}
        for session in sessions:
            session.close()
