class ServiceException(Exception):
    """Base exception for service layer errors"""
    def __init__(self, message, error_code=None, status_code=400):
        self.message = message
        self.error_code = error_code or 'SERVICE_ERROR'
        self.status_code = status_code
        super().__init__(self.message)

    def __str__(self):
        return self.message

class AuthenticationError(ServiceException):
    """Raised when authentication fails"""
    def __init__(self, message="Authentication failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'AUTH_ERROR',
            status_code=401
        )

class AuthorizationError(ServiceException):
    """Raised when the caller lacks admin rights or access to a zone"""
    def __init__(self, message="Authorization failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'FORBIDDEN',
            status_code=403
        )

class ValidationError(ServiceException):
    """Raised when input validation fails"""
    def __init__(self, message="Validation failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'VALIDATION_ERROR',
            status_code=400
        )

class NotFoundError(ServiceException):
    """Raised when a referenced resource does not exist"""
    def __init__(self, message="Resource not found", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'NOT_FOUND',
            status_code=404
        )

class ConflictError(ServiceException):
    """Raised when a unique name or id is already taken"""
    def __init__(self, message="Resource already exists", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'CONFLICT',
            status_code=409
        )

class QuotaExceededError(ServiceException):
    """Raised when a user reached the VM limit of a zone"""
    def __init__(self, message="Quota exceeded", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'QUOTA_EXCEEDED',
            status_code=403
        )

class ExternalCallError(ServiceException):
    """Raised when the orchestrator rejects a call or cannot be reached"""
    def __init__(self, message="Orchestrator call failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'EXTERNAL_CALL_FAILED',
            status_code=502
        )

class ConsistencyError(ServiceException):
    """Raised when the local store could not be updated"""
    def __init__(self, message="Database update failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'DATABASE_ERROR',
            status_code=500
        )

class ProtocolError(ServiceException):
    """Raised when a transfer session is used out of order"""
    def __init__(self, message="Transfer protocol error", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'TRANSFER_ERROR',
            status_code=409
        )
