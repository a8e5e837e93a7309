from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Documented shape of ``api_response`` payloads."""

    status_code: int = 200
    status: str = "success"
    message: str
    data: T
    error: Optional[str] = None


class ErrorResponse(APIResponse[dict]):
    status: str = "error"
    data: dict = {}
