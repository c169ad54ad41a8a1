from fastapi import HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.requests import Request
import logging

logger = logging.getLogger(__name__)

class AppException(Exception):
    """Base application exception"""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

class ValidationError(AppException):
    """A required field is missing or malformed. Not retried."""
    status_code = status.HTTP_400_BAD_REQUEST

class PermissionDenied(AppException):
    status_code = status.HTTP_403_FORBIDDEN

class NotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND

class ConflictError(AppException):
    """The operation lost against the current state of a resource."""
    status_code = status.HTTP_409_CONFLICT

class InsufficientStockError(ConflictError):
    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}. "
            f"Requested: {requested}, Available: {available}"
        )

class DeliveryAlreadyAssigned(ConflictError):
    def __init__(self, delivery_id: int):
        self.delivery_id = delivery_id
        super().__init__(f"Delivery {delivery_id} is already assigned")

class TransientError(AppException):
    """Database or network unreachable; safe for the caller to retry."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

async def app_exception_handler(request: Request, exc: AppException):
    """Render domain errors as {"detail": message}"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )

async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail}
        )
    elif isinstance(exc, AppException):
        return await app_exception_handler(request, exc)

    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    # Generic error for production
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )
