"""
Error types shared by the services. The HTTP layer maps each one to a status
code; nothing below main.py knows about FastAPI.
"""


class RealtyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RealtyError):
    """Missing or malformed input."""
    status_code = 400


class NotFoundError(RealtyError):
    """A referenced document does not exist."""
    status_code = 404


class UpstreamFailure(RealtyError):
    """The media host or the text generator failed."""
    status_code = 502


class StoreFailure(RealtyError):
    """The database could not complete the operation."""
    status_code = 503
