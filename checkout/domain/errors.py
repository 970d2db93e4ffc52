# checkout/domain/errors.py


class CheckoutError(Exception):
    """Recoverable checkout failure; shown to the user, never corrupts state."""

    title = "Order Error"
    code = "checkout_error"


class OrderCreationError(CheckoutError):
    title = "Order Creation Failed"
    code = "order_creation_failed"


class EmptyCartError(OrderCreationError):
    title = "Empty Cart"
    code = "empty_cart"


class AddressRequiredError(OrderCreationError):
    title = "Address Required"
    code = "address_required"


class InsufficientBalanceError(CheckoutError):
    title = "Insufficient Tokens"
    code = "insufficient_balance"

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(
            f"You need {required:.2f} tokens but only have {available:.2f} tokens available."
        )


class RailUnavailableError(CheckoutError):
    title = "Payment Method Unavailable"
    code = "rail_unavailable"


class ResourceCooldownError(CheckoutError):
    title = "Please Wait"
    code = "cooldown"

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Please wait {remaining_seconds} seconds before generating a new payment."
        )


class PaymentCreationError(CheckoutError):
    title = "Payment Error"
    code = "payment_creation_failed"


class ConfirmationTimeoutError(CheckoutError):
    title = "Payment Timeout"
    code = "confirmation_timeout"


class SubmitInProgressError(CheckoutError):
    title = "Order In Progress"
    code = "submit_in_progress"


class SettlementSideEffectWarning(UserWarning):
    """Payment went through but a secondary settlement effect failed."""


class OrderInvariantError(RuntimeError):
    """A payment call was about to run without a durable order id."""


class InvalidTransitionError(RuntimeError):
    pass
