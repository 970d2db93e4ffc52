# checkout/celery_worker.py
from celery import Celery

from checkout.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, RECONCILE_INTERVAL_SECONDS

celery_app = Celery(
    "checkout",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

#tasks are registered by import
celery_app.conf.imports = ("checkout.tasks.reconcile",)

celery_app.conf.beat_schedule = {
    "reconcile-pending-payments-every-minute": {
        "task": "checkout.tasks.reconcile.reconcile_pending_payments_task",
        "schedule": RECONCILE_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
