# checkout/repos/order_repo.py
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from checkout.data.models.order import OrderModel
from checkout.domain.schemas import OrderStatus


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        return order

    def get_order(self, order_id: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel).where(OrderModel.order_id == order_id)
        ).scalar_one_or_none()

    def find_pending(self, user_id: str, line_items_hash: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .where(
                OrderModel.user_id == user_id,
                OrderModel.line_items_hash == line_items_hash,
                OrderModel.status == OrderStatus.PENDING,
            )
            .order_by(OrderModel.created_at.desc())
        ).scalars().first()

    def update_order_status(self, order_id: str, status: str) -> OrderModel | None:
        order = self.get_order(order_id)
        if order:
            order.status = status
            if status == OrderStatus.SETTLED:
                order.settled_at = datetime.now(timezone.utc)
            self.db.commit()
            self.db.refresh(order)
        return order
