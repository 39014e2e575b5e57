# exceptions.py
"""Custom exceptions for the take-off retrieval system."""


class TakeoffRouterError(Exception):
    """Base exception for take-off retrieval errors"""
    pass


class QueryProcessingError(TakeoffRouterError):
    """Raised when query processing fails unexpectedly"""
    pass


class ConfigurationError(TakeoffRouterError):
    """Raised when configuration is invalid"""
    pass


class ValidationRejected(TakeoffRouterError):
    """Raised when a station, size or count fails format rules"""

    def __init__(self, message: str, value=None):
        super().__init__(message)
        self.value = value


class CollaboratorUnavailable(TakeoffRouterError):
    """Raised when an external collaborator call fails or times out"""
    pass


class DatabaseError(CollaboratorUnavailable):
    """Raised when database operations fail"""
    pass


class VectorServiceError(CollaboratorUnavailable):
    """Raised when vector service operations fail"""
    pass


class VisionServiceError(CollaboratorUnavailable):
    """Raised when the vision extraction service fails"""
    pass
