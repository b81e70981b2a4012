# skillforge/utils/responses.py
from datetime import datetime, timezone
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from skillforge.utils.config import settings


def envelope(success: bool, data: Any = None, error: str | None = None, error_code: int | None = None) -> dict:
    """Builds the standard {success, data, error, metadata} body."""
    metadata = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.api_version,
    }
    if error_code is not None:
        metadata["errorCode"] = error_code
    return {
        "success": success,
        "data": jsonable_encoder(data),
        "error": error,
        "metadata": metadata,
    }


def ok(data: Any = None) -> dict:
    return envelope(True, data=data)


def error_response(status_code: int, message: str, error_code: int | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(False, error=message, error_code=error_code))
