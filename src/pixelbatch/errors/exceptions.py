"""Custom exception classes for the pixelbatch API."""


class PixelBatchError(Exception):
    """Base exception for pixelbatch control-plane failures."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(PixelBatchError):
    """Request validation failure (e.g. batch size out of range)."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(PixelBatchError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class AuthenticationError(PixelBatchError):
    """Authentication required or token invalid."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__("AUTHENTICATION_ERROR", message, status_code=401)


class AuthorizationError(PixelBatchError):
    """Caller is not allowed to act on this resource."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__("AUTHORIZATION_ERROR", message, status_code=403)


class EntitlementError(PixelBatchError):
    """Caller failed the billing/entitlement check at batch creation."""

    def __init__(self, message: str):
        super().__init__("ENTITLEMENT_DENIED", message, status_code=402)


class ConflictError(PixelBatchError):
    """Resource state conflict."""

    def __init__(self, message: str, details=None):
        super().__init__("CONFLICT", message, details, status_code=409)


class InvalidTransitionError(ConflictError):
    """Requested status transition is not allowed from the job's current status."""

    def __init__(self, batch_id: str, current_status: str, action: str):
        super().__init__(
            f"Cannot {action} batch '{batch_id}': status is '{current_status}'",
            details={"batch_id": batch_id, "status": current_status, "action": action},
        )
        self.code = "INVALID_TRANSITION"
