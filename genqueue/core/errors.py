"""
Error taxonomy shared by every endpoint.

Each error carries the HTTP status it is reported with; the API layer renders
them as ``{"error": message, "success": false}``.
"""


class GenQueueError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(GenQueueError):
    """Missing or invalid bearer token."""
    status_code = 401


class ValidationError(GenQueueError):
    """Missing or malformed request fields."""
    status_code = 400


class NotFoundError(GenQueueError):
    """Job, project or worker lookup miss."""
    status_code = 404


class UpstreamError(GenQueueError):
    """Redis, storage, provider or worker call failed."""
    status_code = 502
