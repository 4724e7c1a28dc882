
class LibrisAPIError(Exception):
    status_code = 500
    code = "SERVER_500"
    default_message = "Internal server error"

    def __init__(self, message=None, details=None):
        super().__init__(message or self.default_message)
        self.details = details

    def to_dict(self):
        error = {"code": self.code, "message": str(self)}
        if self.details:
            error["details"] = self.details
        return error

class ValidationError(LibrisAPIError):
    status_code = 400
    code = "VALIDATION_400"
    default_message = "Validation failed"

class InvalidRequestError(ValidationError):
    code = "INVALID_REQUEST_400"
    default_message = "Invalid request"

class AuthError(LibrisAPIError):
    status_code = 401
    code = "AUTH_401"
    default_message = "Authentication required"

class PermissionDeniedError(LibrisAPIError):
    status_code = 403
    code = "PERMISSION_403"
    default_message = "Access denied. Insufficient permissions."

class NotFoundError(LibrisAPIError):
    status_code = 404
    code = "NOT_FOUND_404"
    default_message = "Not found"

class UserNotFoundError(NotFoundError): pass

class BookNotFoundError(NotFoundError): pass

class LoanNotFoundError(NotFoundError): pass

class ExtensionNotFoundError(NotFoundError): pass

class FineNotFoundError(NotFoundError): pass

class ReturnNotFoundError(NotFoundError): pass

class NotificationNotFoundError(NotFoundError): pass

class ConflictError(LibrisAPIError):
    status_code = 409
    code = "CONFLICT_409"
    default_message = "Request conflicts with the current state"

class InvalidStatusError(ConflictError):
    code = "INVALID_STATUS_409"

class InsufficientStockError(ConflictError):
    code = "STOCK_409"
    default_message = "Insufficient stock"

class StockUnavailableError(InsufficientStockError):
    status_code = 400

class DuplicateRequestError(ConflictError):
    code = "DUPLICATE_REQUEST_409"
    default_message = "Request already pending"

class ImmutableRecordError(ConflictError): pass

class InternalError(LibrisAPIError): pass

class DatabaseError(InternalError):
    default_message = "Database operation failed"
