# checkout/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from checkout.api.dependencies import shutdown_registry
from checkout.api.routers import checkout, health, payments
from checkout.data.database import Base, engine
from checkout.utils.logging import get_logger

#models must be imported before create_all
from checkout.data.models import OrderModel, PaymentResourceModel  # noqa: F401

logger = get_logger(__name__)


def init_db() -> None:
    logger.info(f"Creating tables: {list(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    shutdown_registry()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Checkout Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(checkout.router)
    app.include_router(payments.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
