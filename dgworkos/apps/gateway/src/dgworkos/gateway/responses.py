"""统一响应信封

成功：{"success": true, "data": ...}
失败：{"success": false, "error": {"code", "message", ...details}}
"""

from typing import Any

from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse


def ok(data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": jsonable_encoder(data)},
    )


def error_envelope(status_code: int, error: dict[str, Any]) -> JSONResponse:
    """error 至少包含 code 与 message"""
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": jsonable_encoder(error)},
    )


def error_response(status_code: int, code: str, message: str, **details: Any) -> JSONResponse:
    return error_envelope(status_code, {"code": code, "message": message, **details})
