"""
Error taxonomy shared by the cart and billing services.

Each error is an ``HTTPException`` so services can raise it directly and
FastAPI turns it into a response. The body is always
``{"detail": {"code": ..., "message": ..., **extra}}``.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class PharmacyError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "error"

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message, **extra},
        )

    def __str__(self) -> str:
        return self.message


class NotFound(PharmacyError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Unavailable(PharmacyError):
    code = "unavailable"


class InsufficientStock(PharmacyError):
    code = "insufficient_stock"

    def __init__(
        self,
        message: str,
        available: int,
        requested: int,
        product_id: Optional[int] = None,
        **extra: Any,
    ):
        self.available = available
        self.requested = requested
        self.product_id = product_id
        super().__init__(
            message,
            available=available,
            requested=requested,
            product_id=product_id,
            **extra,
        )


class InvalidQuantity(PharmacyError):
    code = "invalid_quantity"


class ValidationFailed(PharmacyError):
    code = "validation_failed"


class Forbidden(PharmacyError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
