"""Domain errors raised by the services layer.

Routers translate these into HTTP responses; services never raise
HTTPException themselves.
"""


class EntregaError(Exception):
    """Base class for every domain error."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EntregaError):
    """Document or payload is present but misses mandatory data."""


class DuplicateError(EntregaError):
    """Access key already registered (in storage or earlier in the batch)."""

    status_code = 409

    def __init__(self, message: str, access_key: str | None = None):
        super().__init__(message)
        self.access_key = access_key


class NotFoundError(EntregaError):
    status_code = 404


class InvalidTransitionError(EntregaError):
    """Requested status change is not allowed from the current status."""

    status_code = 409


class InvoiceLockedError(EntregaError):
    """Logistics fields of a finished invoice cannot change."""

    status_code = 409


class RemoteOperationError(EntregaError):
    """Outbound call (lookup service, storage) failed."""

    status_code = 502


class CredentialError(EntregaError):
    status_code = 401

    def __init__(self, message: str = "Senha incorreta"):
        super().__init__(message)
