# checkout/data/models/payment.py
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Text
from datetime import datetime, timezone

from checkout.data.database import Base


class PaymentResourceModel(Base):
    __tablename__ = "payment_resources"

    id = Column(Integer, primary_key=True)
    payment_id = Column(String, nullable=False, unique=True)
    order_id = Column(String, ForeignKey("orders.order_id"), nullable=False)
    user_id = Column(String, nullable=False)
    rail = Column(String, nullable=False)

    url = Column(String, nullable=True)
    qr_image = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="PENDING")  # PENDING, PAID, FAILED, EXPIRED
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=True)
