"""Checkout errors and error message constants."""


class errmsg:
    """Error message constants for the checkout domain."""

    VISIT_NOT_FOUND = "Visit not found"
    VISIT_COMPLETED = "Visit is already completed"
    VISIT_EMPTY = "Visit has no items to bill"
    CUSTOMER_NOT_FOUND = "Customer not found"
    ITEM_NOT_FOUND = "Item not found on visit"
    ITEM_NOT_SERVICE = "Only service lines can be assigned staff or completed"
    CATALOG_ITEM_NOT_FOUND = "Catalog item not found or inactive"
    QUANTITY_POSITIVE = "Quantity must be a positive integer"
    PRICE_NEGATIVE = "Price cannot be negative"
    INVALID_ITEM_KIND = "Item kind must be 'service' or 'product'"
    INVALID_DISCOUNT_MODE = "Invalid discount mode"
    DISCOUNT_VALUE_REQUIRED = "Discount value is required"
    DISCOUNT_VALUE_INVALID = "Discount value must be a non-negative number"
    POINTS_INVALID = "Points to redeem must be a non-negative whole number"
    NO_MEMBERSHIP = "Customer has no membership"
    MEMBERSHIP_NOT_FOUND = "Membership not found"
    AMOUNT_PAID_INVALID = "Amount paid must be a non-negative number"
    COUPON_CODE_REQUIRED = "Coupon code is required"
    COUPON_NOT_FOUND = "Coupon not found"
    COUPON_INACTIVE = "Coupon is inactive"
    COUPON_NOT_YET_VALID = "Coupon is not yet valid"
    COUPON_EXPIRED = "Coupon has expired"
    COUPON_MIN_ORDER = "Minimum order amount of {amount} required"
    COUPON_USAGE_LIMIT = "Coupon usage limit reached"
    COUPON_EXISTS = "Coupon code already exists"
    COUPON_TYPE_INVALID = "Coupon discount type must be 'flat' or 'percentage'"
    COUPON_VALUE_POSITIVE = "Coupon discount value must be greater than 0"
    INVALID_TRANSITION = "Cannot move visit from {current} to {target}"


class CheckoutError(Exception):
    """Base class for errors raised by the checkout services."""

    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CheckoutError):
    """Input was rejected before any mutation happened."""


class NotFoundError(CheckoutError):
    status_code = 404


class CouponValidationError(ValidationError):
    """Coupon failed one of the redemption checks."""

    def __init__(self, message, reason, **details):
        super().__init__(message, **details)
        self.reason = reason


class VisitLockedError(CheckoutError):
    """Items of a completed visit can no longer change."""

    status_code = 409


class InvalidVisitTransition(CheckoutError):
    status_code = 409

    def __init__(self, current, target):
        super().__init__(
            errmsg.INVALID_TRANSITION.format(current=current, target=target),
            current=current,
            target=target,
        )
        self.current = current
        self.target = target
