class BookingError(Exception):
    """
    Base class for every failure the booking flow reports to a client.
    `status_code` is the HTTP status the API layer answers with.
    """

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(BookingError):
    status_code = 400


class InvalidPricing(ValidationError):
    pass


class SignatureInvalid(BookingError):
    status_code = 400


class NotFound(BookingError):
    status_code = 404


class SessionNotFound(NotFound):
    pass


class InvalidTransition(BookingError):
    status_code = 409


class ConfigurationError(BookingError):
    pass


class PersistenceError(BookingError):
    pass


class UpstreamError(BookingError):
    pass


class NotificationError(BookingError):
    """Raised inside the notifier only; callers see a NotificationResult instead."""
