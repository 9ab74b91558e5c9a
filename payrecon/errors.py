"""
Exception taxonomy for checkout creation and webhook reconciliation.

Every error carries a machine readable ``code`` and the HTTP status the
Flask error handlers render it with.
"""


class BillingError(Exception):
    code = "BILLING_ERROR"
    status_code = 400

    def __init__(self, message=None, payload=None):
        self.message = message or self.__class__.__doc__ or self.code
        self.payload = payload or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            **self.payload,
        }


class ValidationError(BillingError):
    """Invalid request input."""
    code = "VALIDATION_ERROR"
    status_code = 400


class RateLimitError(BillingError):
    """Too many requests; retry later."""
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message=None, retry_after=None):
        self.retry_after = retry_after
        payload = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, payload)


class NotFoundError(BillingError):
    """Requested record does not exist."""
    code = "NOT_FOUND"
    status_code = 404


class InvalidPlanError(BillingError):
    """Plan cannot be purchased."""
    code = "INVALID_PLAN"
    status_code = 400


class GatewayError(BillingError):
    """Payment processor call failed."""
    code = "GATEWAY_ERROR"
    status_code = 502

    def __init__(self, message=None, last_error=None, attempts=0, error_code=None):
        self.last_error = last_error
        self.attempts = attempts
        self.error_code = error_code
        super().__init__(message or (str(last_error) if last_error else None))


class SecurityRejection(BillingError):
    """Notification failed authentication."""
    code = "SECURITY_REJECTION"
    status_code = 401


class ReconciliationError(BillingError):
    """Notification disagrees with recorded checkout state."""
    code = "RECONCILIATION_ERROR"
    status_code = 409


class PayloadError(BillingError):
    """Notification body could not be parsed."""
    code = "INVALID_PAYLOAD"
    status_code = 400
