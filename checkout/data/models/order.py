# checkout/data/models/order.py
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Index
from datetime import datetime, timezone

from checkout.data.database import Base


class OrderModel(Base):
    """Local mirror of an order created on the order service."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_id = Column(String, nullable=False, unique=True)
    user_id = Column(String, nullable=False)
    line_items_hash = Column(String(64), nullable=False)
    partition = Column(String, nullable=False)

    total_fiat = Column(Numeric(18, 6), nullable=False)
    total_tokens = Column(Numeric(18, 6), nullable=False)
    discount_fiat = Column(Numeric(18, 6), nullable=False, default=0)
    discount_tokens = Column(Numeric(18, 6), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    discount_token_id = Column(String, nullable=True)

    currency_unit = Column(String, nullable=False)  # fiat, ledger
    payment_method = Column(String, nullable=False)
    address_id = Column(String, nullable=True)

    status = Column(String, nullable=False, default="PENDING")  # PENDING, SETTLED, FAILED, ABANDONED
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    settled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_orders_user_hash_status", "user_id", "line_items_hash", "status"),)
