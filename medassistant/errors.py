from typing import Any, Dict, Optional


class ServiceError(Exception):
    """
    Base for every failure the HTTP layer turns into a JSON error body.
    """
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class UpstreamError(ServiceError):
    status_code = 500


class ConfigurationError(ServiceError):
    status_code = 500
