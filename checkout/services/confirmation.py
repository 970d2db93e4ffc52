# checkout/services/confirmation.py
import threading
from typing import Callable, Set

from requests import RequestException

from checkout.domain.schemas import PaymentEvent
from checkout.services.payment_channel import EventHandler, PaymentChannel, normalize_status
from checkout.services.payment_client import PaymentClient
from checkout.services.wallet_client import JobClient
from checkout.utils.logging import get_logger
from checkout.utils.settings import JOB_POLL_INTERVAL_SECONDS

logger = get_logger(__name__)

PROCESSING = "processing"


class PaymentConfirmationListener:
    """
    Push confirmation for the rooms one checkout session has joined.

    Only terminal events reach the callback, with their status normalised
    to ``paid`` or ``failed``. After ``close()`` nothing is delivered.
    """

    def __init__(self, user_id: str, channel: PaymentChannel, payment_client: PaymentClient | None = None):
        self.user_id = user_id
        self.channel = channel
        self.payment_client = payment_client
        self._rooms: Set[str] = set()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def payment_ids(self) -> Set[str]:
        with self._lock:
            return set(self._rooms)

    def listen(self, payment_id: str, on_event: EventHandler) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("Listener already closed")
            if payment_id in self._rooms:
                return
            self._rooms.add(payment_id)

        def handler(event: PaymentEvent) -> None:
            if self._closed or payment_id not in self._rooms:
                return
            if event.user_id != self.user_id:
                logger.warning(f"Ignoring event for user {event.user_id} in room of {self.user_id}")
                return
            status = normalize_status(event.status)
            if status is None:
                return
            on_event(event.model_copy(update={"status": status}))

        self.channel.join_room(self.user_id, payment_id, handler)

    def stop(self, payment_id: str) -> None:
        with self._lock:
            if payment_id not in self._rooms:
                return
            self._rooms.discard(payment_id)
        self.channel.leave_room(self.user_id, payment_id)

    def stop_all(self) -> None:
        for payment_id in self.payment_ids:
            self.stop(payment_id)

    def reconcile(self, payment_id: str) -> str | None:
        """Authoritative status when no push arrived; None while undecided."""
        if self.payment_client is None:
            return None
        try:
            data = self.payment_client.get_payment_status(payment_id)
        except RequestException as e:
            logger.warning(f"Status check for payment {payment_id} failed: {e}")
            return None
        return normalize_status((data or {}).get("status"))

    def close(self) -> None:
        self._closed = True
        self.stop_all()


class JobPoller:
    """
    Fixed interval status check for one long running job.

    Armed only while the job status is exactly ``processing``. A new job
    replaces the tracked one, the same job is never armed twice, and at most
    one status call is in flight at a time.
    """

    def __init__(
        self,
        job_client: JobClient,
        on_status: Callable[[str, str], None] | None = None,
        interval: float = JOB_POLL_INTERVAL_SECONDS,
    ):
        self.job_client = job_client
        self.on_status = on_status
        self.interval = interval
        self.job_id: str | None = None
        self.status: str | None = None
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None
        self._tick_lock = threading.Lock()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def track(self, job_id: str, status: str) -> bool:
        """Arm the poll for ``job_id``; returns whether a poll is running."""
        if status != PROCESSING:
            if job_id == self.job_id:
                self.status = status
                self.cancel()
            return False

        with self._lock:
            if job_id == self.job_id and self.is_running:
                return True
            self._cancel_locked()
            self.job_id = job_id
            self.status = status
            stop = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(job_id, stop), name=f"job-poll-{job_id}", daemon=True
            )
            self._stop, self._thread = stop, thread
        thread.start()
        logger.info(f"Polling job {job_id} every {self.interval}s")
        return True

    def tick(self, job_id: str) -> str | None:
        """One status check; None when skipped or when the check failed."""
        if not self._tick_lock.acquire(blocking=False):
            return None
        try:
            status = self.job_client.fetch_status(job_id)
        except RequestException as e:
            logger.warning(f"Status check for job {job_id} failed: {e}")
            return None
        finally:
            self._tick_lock.release()

        if job_id == self.job_id:
            self.status = status
        return status

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _cancel_locked(self) -> None:
        if self._stop is not None:
            self._stop.set()
            logger.info(f"Stopped polling job {self.job_id}")
        self._stop = None
        self._thread = None

    def _run(self, job_id: str, stop: threading.Event) -> None:
        try:
            while not stop.wait(self.interval):
                status = self.tick(job_id)
                if stop.is_set():
                    return
                if status is not None and status != PROCESSING:
                    logger.info(f"Job {job_id} left processing ({status})")
                    if self.on_status:
                        self.on_status(job_id, status)
                    break
        finally:
            with self._lock:
                if self._stop is stop:
                    self._stop = None
                    self._thread = None
