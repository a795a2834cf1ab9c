"""
HTTP errors raised by the webhook receiver
"""

from fastapi import HTTPException, status


class UnauthorizedError(HTTPException):
    """Webhook token missing or wrong (401)"""

    def __init__(self, detail: str = "Webhook token verification failed"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ValidationError(HTTPException):
    """Webhook payload rejected (422)"""

    def __init__(self, detail: str = "Invalid webhook payload"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail
        )
