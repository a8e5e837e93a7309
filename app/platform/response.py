from typing import Any, Dict, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    error: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Envelope shared by every waitlist endpoint.

    ``status`` follows the HTTP code. Failures carry a stable machine-readable
    ``error`` tag (``capacity_exceeded``, ``deadline_exceeded``...) next to the
    human message; successful responses omit it.
    """
    content = {
        "status_code": status_code,
        "status": "success" if status_code < 400 else "error",
        "message": message,
        "data": jsonable_encoder(data) if data is not None else {},
    }
    if error is not None:
        content["error"] = error

    return JSONResponse(status_code=status_code, content=content, headers=headers)
