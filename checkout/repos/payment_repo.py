# checkout/repos/payment_repo.py
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from checkout.data.models.payment import PaymentResourceModel
from checkout.domain.schemas import PaymentStatus


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_resource(self, resource: PaymentResourceModel) -> PaymentResourceModel:
        self.db.add(resource)
        self.db.commit()
        self.db.refresh(resource)
        return resource

    def get_resource(self, payment_id: str) -> PaymentResourceModel | None:
        return self.db.execute(
            select(PaymentResourceModel).where(PaymentResourceModel.payment_id == payment_id)
        ).scalar_one_or_none()

    def update_status(self, payment_id: str, status: str) -> PaymentResourceModel | None:
        resource = self.get_resource(payment_id)
        if resource:
            resource.status = status
            self.db.commit()
            self.db.refresh(resource)
        return resource

    def list_stale_pending(self, now: datetime) -> list[PaymentResourceModel]:
        #pending past its confirmation window
        return list(
            self.db.execute(
                select(PaymentResourceModel).where(
                    PaymentResourceModel.status == PaymentStatus.PENDING,
                    PaymentResourceModel.expires_at.is_not(None),
                    PaymentResourceModel.expires_at < now,
                )
            ).scalars()
        )
