"""
Typed errors for the order core.

Four categories, so callers can choose between retrying and telling the user:

- validation:     bad input shape (non-positive quantity, amount mismatch, unknown ids)
- business_rule:  a rule was violated (insufficient stock, order not payable, ...)
- transient:      store contention that survived the bounded retries
- invariant:      the data disagrees with itself; indicates a bug, never auto-corrected
"""

CATEGORY_VALIDATION = "validation"
CATEGORY_BUSINESS_RULE = "business_rule"
CATEGORY_TRANSIENT = "transient"
CATEGORY_INVARIANT = "invariant"


class OrderCoreError(Exception):
    """Base exception for all order core errors."""
    category = CATEGORY_INVARIANT

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        rv = dict(self.details)
        rv["message"] = self.message
        rv["category"] = self.category
        rv["error"] = type(self).__name__
        return rv


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(OrderCoreError):
    category = CATEGORY_VALIDATION


class ProductNotFoundError(ValidationError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})


class OrderNotFoundError(ValidationError):
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found", {"order_id": order_id})


class ReturnNotFoundError(ValidationError):
    def __init__(self, return_id):
        super().__init__(f"Return {return_id} not found", {"return_id": return_id})


class ReceiptNotFoundError(ValidationError):
    def __init__(self, order_id):
        super().__init__(f"No receipt issued for order {order_id}", {"order_id": order_id})


class AmountMismatchError(ValidationError):
    def __init__(self, amount_cents: int, total_cents: int):
        super().__init__(
            f"Payment amount {amount_cents} does not match order total {total_cents}",
            {"amount_cents": amount_cents, "total_cents": total_cents},
        )


class InsufficientTenderError(ValidationError):
    def __init__(self, tendered_cents: int, amount_cents: int):
        super().__init__(
            f"Amount tendered {tendered_cents} is less than amount due {amount_cents}",
            {"amount_tendered_cents": tendered_cents, "amount_cents": amount_cents},
        )


# =============================================================================
# BUSINESS RULES
# =============================================================================

class BusinessRuleError(OrderCoreError):
    category = CATEGORY_BUSINESS_RULE


class InsufficientStockError(BusinessRuleError):
    def __init__(self, product_id, product_name: str | None, requested: int, available: int):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            {"product_id": product_id, "requested_quantity": requested, "available_quantity": available},
        )


class SerialItemNotAvailableError(BusinessRuleError):
    def __init__(self, serial_item_id, product_id, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Serial unit {serial_item_id} is not available for {label}",
            {"serial_item_id": serial_item_id, "product_id": product_id},
        )


class DiscountNotApplicableError(BusinessRuleError):
    pass


class NoActiveTaxConfigError(BusinessRuleError):
    def __init__(self):
        super().__init__("No active tax configuration")


class OrderNotPayableError(BusinessRuleError):
    def __init__(self, order_id, status: str):
        super().__init__(
            f"Order {order_id} cannot be paid in status {status}",
            {"order_id": order_id, "status": status},
        )


class OrderNotPaidError(BusinessRuleError):
    def __init__(self, order_id, status: str):
        super().__init__(
            f"Order {order_id} is not paid (status {status})",
            {"order_id": order_id, "status": status},
        )


class OrderNotReturnableError(BusinessRuleError):
    def __init__(self, order_id, status: str):
        super().__init__(
            f"Order {order_id} cannot accept returns in status {status}",
            {"order_id": order_id, "status": status},
        )


class OrderNotCancellableError(BusinessRuleError):
    def __init__(self, order_id, status: str):
        super().__init__(
            f"Order {order_id} cannot be cancelled in status {status}",
            {"order_id": order_id, "status": status},
        )


class InvalidReturnQuantityError(BusinessRuleError):
    pass


class ReceiptAlreadyExistsError(BusinessRuleError):
    def __init__(self, order_id):
        super().__init__(
            f"Receipt already exists for order {order_id}; use reprint",
            {"order_id": order_id},
        )


class ReturnStateError(BusinessRuleError):
    pass


class PaymentDeclinedError(BusinessRuleError):
    pass


# =============================================================================
# TRANSIENT
# =============================================================================

class TransientStoreError(OrderCoreError):
    category = CATEGORY_TRANSIENT

    def __init__(self, message: str = "The store is busy, please try again", details: dict | None = None):
        super().__init__(message, details)


class OrderCreationFailedError(TransientStoreError):
    def __init__(self, details: dict | None = None):
        super().__init__("Order could not be created, please try again", details)


# =============================================================================
# INVARIANTS
# =============================================================================

class InvariantViolationError(OrderCoreError):
    category = CATEGORY_INVARIANT
