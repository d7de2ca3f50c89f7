class InvoiceAppError(Exception):
    """Base error for everything the API reports back to the caller."""
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(InvoiceAppError):
    status_code = 404


class InvalidCredentials(InvoiceAppError):
    status_code = 401


class Conflict(InvoiceAppError):
    status_code = 409


class ValidationError(InvoiceAppError):
    status_code = 400
