# library_app/core/exceptions.py
from typing import List, Optional


class LibraryError(Exception):
    """Base class for failures reported to API clients."""
    status_code: int = 500
    default_message: str = "An internal server error occurred."

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class NotFound(LibraryError):
    status_code = 404
    default_message = "Resource not found."


class Conflict(LibraryError):
    """Duplicate unique key (ISBN, email, ...)."""
    status_code = 409
    default_message = "Resource already exists."


class ValidationFailed(LibraryError):
    status_code = 400
    default_message = "Validation error."


class BusinessRuleViolation(LibraryError):
    status_code = 400
    default_message = "Operation not permitted."


class InvalidTransition(BusinessRuleViolation):
    default_message = "Loan cannot make this transition."


class MembershipInvalid(BusinessRuleViolation):
    default_message = "User membership is not valid or has expired."


class NoCopiesAvailable(BusinessRuleViolation):
    default_message = "Book is not available for borrowing."


class AlreadyReturned(BusinessRuleViolation):
    default_message = "Book is already returned."


class NoFineDue(BusinessRuleViolation):
    default_message = "No fine is due for this loan."


class AlreadyPaid(BusinessRuleViolation):
    default_message = "Fine has already been settled."


class InsufficientPayment(BusinessRuleViolation):
    default_message = "Payment amount is less than the fine due."


class ActiveLoansExist(BusinessRuleViolation):
    default_message = "Copies are still on loan."


class StorageUnavailable(LibraryError):
    status_code = 500
    default_message = "Storage is currently unavailable."
