PAYMENT_FAILED_MESSAGE = "Payment could not be completed. Please contact support."


class PortalError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class InvalidRequest(PortalError):
    status_code = 400
    public_message = "Invalid request"


class Unauthorized(PortalError):
    status_code = 401
    public_message = "Unauthorized"


class Forbidden(PortalError):
    status_code = 403
    public_message = "Forbidden"


class NotFound(PortalError):
    status_code = 404
    public_message = "Not found"


class InvalidTransition(PortalError):
    status_code = 409
    public_message = "Order status cannot be changed"


class RateLimited(PortalError):
    status_code = 429
    public_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int):
        super().__init__()
        self.retry_after = retry_after


class AmountMismatch(PortalError):
    status_code = 400
    public_message = PAYMENT_FAILED_MESSAGE


class UpstreamError(PortalError):
    status_code = 500
    public_message = "Payment provider error. Please try again."


class PaymentNotCompleted(UpstreamError):
    status_code = 400
    public_message = PAYMENT_FAILED_MESSAGE


class SignatureInvalid(PortalError):
    status_code = 401
    public_message = "Invalid signature"


class DeliveryFailed(PortalError):
    status_code = 500
    public_message = "Failed to send message. Please try again later."
