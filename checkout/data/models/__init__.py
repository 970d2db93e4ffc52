#import all models so SQLAlchemy registers them in Base.metadata

from checkout.data.models.order import OrderModel
from checkout.data.models.payment import PaymentResourceModel

__all__ = ["OrderModel", "PaymentResourceModel"]
