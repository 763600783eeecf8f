from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').

    Every subclass maps to one class of failure and one HTTP status.
    `code` is machine readable, `details` carries the structured payload
    (current state, allowed actions, per-line reasons...).
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None, details=None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def as_dict(self):
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["data"] = self.details
        return payload


class ValidationFailure(BusinessLogicException):
    """Bad input. Nothing has been touched."""
    default_code = "VALIDATION_FAILED"


class AuthorizationFailure(BusinessLogicException):
    """Actor does not own the Order / SubOrder, or has the wrong role."""
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class ResourceNotFound(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class StateConflict(BusinessLogicException):
    """
    Request is legal in shape but not in the current state.
    `details` always reports the current state.
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = "STATE_CONFLICT"


class ConsistencyFailure(BusinessLogicException):
    """
    Storage did not accept a mutation the business rules allowed
    (e.g. a conditional stock decrement matched no row).
    Logged at ERROR by whoever raises it.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "CONSISTENCY_FAILURE"


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, BusinessLogicException):
        return Response(exc.as_dict(), status=exc.status_code)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
