"""Exceptions raised by the order and payment core.

Each family carries the HTTP status the API layer answers with.
"""


class OrderPayError(Exception):
    """Base exception for all order/payment errors."""

    status_code = 400


# --- caller-correctable input ---

class ValidationError(OrderPayError):
    status_code = 422


class UnsupportedGatewayError(ValidationError):
    def __init__(self, gateway: str):
        self.gateway = gateway
        super().__init__(f"Unsupported payment gateway: {gateway}")


# --- business rules ---

class DomainRuleError(OrderPayError):
    status_code = 409


class InsufficientStockError(DomainRuleError):
    def __init__(self, product: str, requested: int, available: int):
        self.product = product
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product: {product} (requested {requested}, available {available})"
        )


class OrderAlreadyPaidError(DomainRuleError):
    def __init__(self, order_number: str, action: str = "update"):
        self.order_number = order_number
        super().__init__(f"Cannot {action} order {order_number} after payment is processed")


class OrderHasPaymentsError(DomainRuleError):
    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Cannot delete order {order_number} with associated payments")


class OrderNotCancellableError(DomainRuleError):
    def __init__(self, order_number: str, order_status: str, payment_status: str):
        self.order_number = order_number
        super().__init__(
            f"Order {order_number} cannot be cancelled "
            f"(order_status={order_status}, payment_status={payment_status})"
        )


class OrderNotPayableError(DomainRuleError):
    def __init__(self, order_number: str, reason: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} cannot be paid: {reason}")


class PaymentNotPaidError(DomainRuleError):
    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} must be paid before marking the order as completed")


class NotRefundableError(DomainRuleError):
    def __init__(self, payment_id: str, status: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} cannot be refunded (status={status})")


class RefundExceedsAmountError(DomainRuleError):
    def __init__(self, requested_cents: int, paid_cents: int):
        self.requested_cents = requested_cents
        self.paid_cents = paid_cents
        super().__init__(
            f"Refund amount {requested_cents} exceeds payment amount {paid_cents}"
        )


# --- lookups ---

class NotFoundError(OrderPayError):
    status_code = 404


class OrderNotFoundError(NotFoundError):
    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Order not found: {ref}")


class PaymentNotFoundError(NotFoundError):
    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Payment not found: {ref}")


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ReferenceNotFoundError(NotFoundError):
    def __init__(self, gateway: str, external_id: str):
        self.gateway = gateway
        self.external_id = external_id
        super().__init__(f"Order reference not found in {gateway} payment response for {external_id}")


# --- payment providers ---

class GatewayError(OrderPayError):
    """The provider was unreachable, rejected the call, or answered unexpectedly."""

    status_code = 502

    def __init__(self, gateway: str, message: str):
        self.gateway = gateway
        super().__init__(f"[{gateway}] {message}")


class GatewayTimeoutError(GatewayError):
    """Outcome unknown at the provider; local state must stay untouched."""

    status_code = 504

    def __init__(self, gateway: str, endpoint: str):
        self.endpoint = endpoint
        super().__init__(gateway, f"Timed out calling {endpoint}")


class CaptureError(GatewayError):
    pass


class RefundError(GatewayError):
    pass
