# library_app/core/responses.py
"""Standard response envelope shared by every endpoint."""
from typing import Any, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(status_code: int = 200, message: str = "Success", data: Any = None, meta: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "success": True,
            "statusCode": status_code,
            "message": message,
            "data": data,
            "meta": meta or {},
        }),
    )


def error_response(status_code: int = 500, message: str = "Error", errors: Optional[List[str]] = None, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "statusCode": status_code,
            "message": message,
            "errors": errors or [],
        },
        headers=headers,
    )
