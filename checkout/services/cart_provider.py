# checkout/services/cart_provider.py
import threading
from typing import Callable, Iterable, List, Protocol

from checkout.domain.schemas import LineItem, Partition
from checkout.services.amounts import filter_partition
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

CartListener = Callable[[], None]


class CartProvider(Protocol):
    def get_line_items(self, partition: Partition | None = None) -> List[LineItem]: ...

    def clear(self, partition: Partition | None = None) -> None: ...

    def subscribe(self, listener: CartListener) -> Callable[[], None]: ...


class SnapshotCart:
    """
    Cart as last reported by the client.

    The checkout never edits items; it only reads them and clears a
    partition after settlement. Every content change notifies subscribers
    synchronously, before ``replace``/``clear`` returns.
    """

    def __init__(self, items: Iterable[LineItem] = ()):
        self._items: List[LineItem] = list(items)
        self._listeners: List[CartListener] = []
        self._lock = threading.RLock()

    def get_line_items(self, partition: Partition | None = None) -> List[LineItem]:
        with self._lock:
            items = list(self._items)
        if partition is None:
            return items
        return filter_partition(items, partition)

    def replace(self, items: Iterable[LineItem]) -> bool:
        items = list(items)
        with self._lock:
            if items == self._items:
                return False
            self._items = items
        self._notify()
        return True

    def clear(self, partition: Partition | None = None) -> None:
        with self._lock:
            if partition is None:
                kept = []
            else:
                other = Partition.DIGITAL if partition == Partition.PHYSICAL else Partition.PHYSICAL
                kept = filter_partition(self._items, other)
            changed = kept != self._items
            self._items = kept
        if changed:
            logger.info(f"Cart cleared (partition={partition.value if partition else 'all'})")
            self._notify()

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener()
