"""Shared exceptions module."""

from typing import Optional

from pydantic import ValidationError


class BillflowException(Exception):
    """Base exception for billflow services."""

    pass


class NotFoundException(BillflowException):
    """Exception raised when a referenced object does not exist."""

    def __init__(self, message: Optional[str] = "Object not found"):
        """Create a new NotFoundException instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class InvalidStateError(BillflowException):
    """Exception raised when an operation is illegal for the object's current status.

    Examples are confirming a payment that already succeeded, refunding a payment
    that never succeeded, voiding a paid invoice or touching a canceled subscription.
    """

    def __init__(self, message: Optional[str] = "Object is in an invalid state"):
        """Create a new InvalidStateError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class InvalidInputError(BillflowException):
    """Exception raised when a caller-supplied value fails a precondition."""

    def __init__(self, message: Optional[str] = "Invalid input"):
        """Create a new InvalidInputError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class ExternalServiceError(BillflowException):
    """Exception raised when an external gateway fails.

    Always raised ``from`` the underlying SDK or HTTP error so the cause is preserved.
    """

    def __init__(self, service_name: str, message: Optional[str] = "External service failed"):
        """Create a new ExternalServiceError instance.

        Args:
        ----
            service_name (str): The name of the external service.
            message (str, optional): The error message. Has default message.

        """
        self.service_name = service_name
        self.message = message
        super().__init__(f"{service_name}: {message}")


class TokenRefreshError(ExternalServiceError):
    """Exception raised when the ledger gateway refuses to issue an access token."""

    def __init__(self, message: Optional[str] = "Token refresh failed"):
        """Create a new TokenRefreshError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(service_name="Ramp", message=message)


class WebhookSignatureError(BillflowException):
    """Exception raised when a webhook payload fails signature verification."""

    def __init__(self, source: str, message: Optional[str] = "Invalid webhook signature"):
        """Create a new WebhookSignatureError instance.

        Args:
        ----
            source (str): The webhook source (stripe, ramp).
            message (str, optional): The error message. Has default message.

        """
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class WebhookProcessingError(BillflowException):
    """Exception raised when a verified webhook delivery cannot be applied.

    Covers malformed events and handler failures. The gateway treats the failed
    delivery as undelivered and retries it.
    """

    def __init__(self, source: str, message: Optional[str] = "Webhook processing failed"):
        """Create a new WebhookProcessingError instance.

        Args:
        ----
            source (str): The webhook source (stripe, ramp).
            message (str, optional): The error message. Has default message.

        """
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


def unpack_validation_error(exc: ValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (ValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        error_messages.append({field: error["msg"]})

    return {"errors": error_messages}
