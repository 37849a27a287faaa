"""
Error taxonomy for the CropAdvisor API.

Every error carries the HTTP status it maps to and a short client-facing
message. Internal detail (upstream bodies, tracebacks) stays in the logs.
"""
from typing import Optional


class CropAdvisorError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(CropAdvisorError):
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(CropAdvisorError):
    status_code = 401
    default_message = "authentication_required"


class NotFoundError(CropAdvisorError):
    status_code = 404
    default_message = "Not found"


class ClientDisconnectedError(CropAdvisorError):
    # nginx convention; the client is gone so nobody reads the body
    status_code = 499
    default_message = "Client closed request"


class UpstreamError(CropAdvisorError):
    """The completion API failed or answered with an unusable payload."""

    status_code = 502

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        self.detail = detail
        super().__init__(f"AI service failed during {operation}")


class UpstreamTimeoutError(UpstreamError):
    status_code = 504

    def __init__(self, operation: str, detail: Optional[str] = None):
        super().__init__(operation, detail)
        self.message = f"AI service timed out during {operation}"


class ConfigError(RuntimeError):
    """Raised at startup when required configuration is missing or invalid."""
