from contextlib import contextmanager

from sqlalchemy.exc import InterfaceError, OperationalError


class ServiceError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(ServiceError):
    """Referenced conversation, message or sale does not exist."""


class StoreUnavailable(ServiceError):
    """Transient store failure. Callers may retry; services never retry internally."""


class ValidationFailed(ServiceError):
    """Bad input, rejected before any write."""


class ExternalIntegrationFailed(ServiceError):
    """Bridge or notifier call failed. Only ever carried inside a BestEffort."""


@contextmanager
def store_errors(operation: str):
    """Translate connection-level database errors into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(f"{operation}: store unavailable ({e.__class__.__name__})") from e
