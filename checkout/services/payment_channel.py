# checkout/services/payment_channel.py
import json
import threading
from typing import Callable, Dict, List, Protocol

import redis
from pydantic import ValidationError

from checkout.domain.schemas import PaymentEvent
from checkout.utils.logging import get_logger
from checkout.utils.retry import redis_retry
from checkout.utils.settings import REDIS_URL

logger = get_logger(__name__)

EventHandler = Callable[[PaymentEvent], None]

PAID = "paid"
FAILED = "failed"

#processors disagree on spelling, "failes" included
_TERMINAL_STATUSES = {
    "paid": PAID,
    "succeeded": PAID,
    "success": PAID,
    "completed": PAID,
    "failed": FAILED,
    "failes": FAILED,
    "cancelled": FAILED,
    "canceled": FAILED,
    "expired": FAILED,
}


def normalize_status(status: str | None) -> str | None:
    """``paid`` / ``failed`` for terminal statuses, None while still pending."""
    if not status:
        return None
    return _TERMINAL_STATUSES.get(str(status).strip().lower())


def room_name(user_id: str, payment_id: str) -> str:
    return f"payment_{user_id}_{payment_id}"


class PaymentChannel(Protocol):
    def join_room(self, user_id: str, payment_id: str, handler: EventHandler) -> None: ...

    def leave_room(self, user_id: str, payment_id: str) -> None: ...

    def publish(self, event: PaymentEvent) -> int: ...

    def close(self) -> None: ...


class LocalPaymentChannel:
    """Rooms inside one process; ``publish`` delivers on the caller's thread."""

    def __init__(self):
        self._rooms: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()

    def join_room(self, user_id: str, payment_id: str, handler: EventHandler) -> None:
        room = room_name(user_id, payment_id)
        with self._lock:
            self._rooms.setdefault(room, []).append(handler)
        logger.info(f"Joined {room}")

    def leave_room(self, user_id: str, payment_id: str) -> None:
        room = room_name(user_id, payment_id)
        with self._lock:
            self._rooms.pop(room, None)
        logger.info(f"Left {room}")

    def publish(self, event: PaymentEvent) -> int:
        with self._lock:
            handlers = list(self._rooms.get(room_name(event.user_id, event.payment_id), []))
        for handler in handlers:
            handler(event)
        return len(handlers)

    def close(self) -> None:
        with self._lock:
            self._rooms.clear()


class RedisPaymentChannel:
    """
    Rooms as redis pub/sub channels.

    Messages are handled on the pub/sub worker thread started with the first
    joined room, so any worker process can publish an event for any session.
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(url or REDIS_URL, decode_responses=True)
        self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._thread = None

    @redis_retry()
    def join_room(self, user_id: str, payment_id: str, handler: EventHandler) -> None:
        room = room_name(user_id, payment_id)
        with self._lock:
            self._pubsub.subscribe(**{room: self._on_message})
            self._handlers.setdefault(room, []).append(handler)
            if self._thread is None:
                self._thread = self._pubsub.run_in_thread(sleep_time=0.5, daemon=True)
        logger.info(f"Joined {room}")

    @redis_retry()
    def leave_room(self, user_id: str, payment_id: str) -> None:
        room = room_name(user_id, payment_id)
        with self._lock:
            if self._handlers.pop(room, None) is not None:
                self._pubsub.unsubscribe(room)
        logger.info(f"Left {room}")

    @redis_retry()
    def publish(self, event: PaymentEvent) -> int:
        room = room_name(event.user_id, event.payment_id)
        return int(self.redis.publish(room, event.model_dump_json(by_alias=True)))

    def close(self) -> None:
        with self._lock:
            self._handlers.clear()
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.stop()
        self._pubsub.close()

    def _on_message(self, message: dict) -> None:
        room = message.get("channel")
        with self._lock:
            handlers = list(self._handlers.get(room, []))
        if not handlers:
            return
        try:
            event = PaymentEvent.model_validate(json.loads(message.get("data") or "{}"))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Dropping malformed payment event on {room}: {e}")
            return
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # keep the pub/sub thread alive for the other rooms
                logger.exception(f"Payment event handler failed on {room}")
