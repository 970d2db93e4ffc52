# checkout/utils/settings.py
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./checkout.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/2")

# upstream services
ORDER_SERVICE_URL = os.getenv("ORDER_SERVICE_URL", "http://order-service:8000")
PAYMENT_SERVICE_URL = os.getenv("PAYMENT_SERVICE_URL", "http://payment-service:8000")
REWARD_SERVICE_URL = os.getenv("REWARD_SERVICE_URL", PAYMENT_SERVICE_URL)
WALLET_SERVICE_URL = os.getenv("WALLET_SERVICE_URL", "http://wallet-service:8000")
JOB_SERVICE_URL = os.getenv("JOB_SERVICE_URL", "http://studio-service:8000")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 5))

PAYMENT_COOLDOWN_SECONDS = int(os.getenv("PAYMENT_COOLDOWN_SECONDS", 60))
JOB_POLL_INTERVAL_SECONDS = float(os.getenv("JOB_POLL_INTERVAL_SECONDS", 5))
CONFIRMATION_TIMEOUT_SECONDS = int(os.getenv("CONFIRMATION_TIMEOUT_SECONDS", 5 * 60))
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", 60))
SUBMIT_LOCK_TTL_SECONDS = int(os.getenv("SUBMIT_LOCK_TTL_SECONDS", 30))
SETTLEMENT_MARKER_TTL_SECONDS = int(os.getenv("SETTLEMENT_MARKER_TTL_SECONDS", 24 * 60 * 60))

PLATFORM_ACCOUNT_ID = os.getenv("PLATFORM_ACCOUNT_ID", "platform")
FIAT_CURRENCY = os.getenv("FIAT_CURRENCY", "USD")
LEDGER_CURRENCY = os.getenv("LEDGER_CURRENCY", "app_token")
PAYMENT_TYPE = "buyProduct"
KIOSK_SELLER = "Kiosk"
DISPLAY_QUANT = Decimal("0.01")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
