# Overview: Typed error hierarchy shared by services and routes.

"""
Salon ERP error taxonomy.

Services raise these; routes translate them into JSON responses using
`code` and `http_status`. Nothing in the core retries on them except
Conflict, which is itself the result of an exhausted retry.
"""


class SalonErpError(Exception):
    """Base class for all expected business errors."""
    code = "ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(SalonErpError):
    """Malformed or out-of-range input."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(SalonErpError):
    """Referenced entity is absent or not owned by the calling salon."""
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStock(SalonErpError):
    """Consuming movement would drive stock negative."""
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, message: str, *, product_id: int | None = None,
                 available: int | None = None, requested: int | None = None):
        super().__init__(message)
        self.product_id = product_id
        self.available = available
        self.requested = requested

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.product_id is not None:
            body["product_id"] = self.product_id
            body["available"] = self.available
            body["requested"] = self.requested
        return body


class Conflict(SalonErpError):
    """Concurrent update retries exhausted, or a state transition already happened."""
    code = "CONFLICT"
    http_status = 409

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryable"] = self.retryable
        return body
