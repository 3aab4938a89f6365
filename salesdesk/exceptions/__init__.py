"""Custom exceptions for the salesdesk application."""

class AppError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(AppError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class ValidationError(BusinessLogicError):
    """Raised when a request body is malformed. Carries per-field errors."""
    def __init__(self, errors):
        self.errors = dict(errors)
        super().__init__('Invalid request', status_code=400, payload={'errors': self.errors})

class NotFoundError(AppError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_name, requested, available, product_id=None):
        message = (
            f'Insufficient stock for "{product_name}". '
            f'Available: {available}, requested: {requested}.'
        )
        payload = {'product_id': product_id, 'available': available, 'requested': requested}
        super().__init__(message, status_code=409, payload=payload)
        self.product_id = product_id
        self.available = available
        self.requested = requested

class InvoiceNumberUnavailableError(AppError):
    """Raised when no unique invoice number could be allocated. Safe to retry."""
    def __init__(self, attempts):
        super().__init__(
            'Unable to allocate a unique invoice number. Please retry.',
            status_code=503,
            payload={'retryable': True, 'attempts': attempts}
        )

class SettlementError(AppError):
    """Raised when persisting a sale fails unexpectedly. Nothing was written."""
    def __init__(self, message="Unable to settle the sale"):
        super().__init__(message, 500)

class UnauthorizedError(AppError):
    """Raised when the request has no authenticated user."""
    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)

class ForbiddenError(AppError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="You do not have permission to perform this action"):
        super().__init__(message, 403)
