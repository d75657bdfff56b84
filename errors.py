"""Errors raised by the service layer and rendered by the API as ``{success: false, message}``."""
from typing import Any, List, Optional


class APIError(Exception):
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class Rejected(APIError):
    """An expected business outcome the caller has to handle: empty cart, no stock, not cancellable."""
    status_code = 400


class NotFound(APIError):
    status_code = 404


class Forbidden(APIError):
    status_code = 403
