from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class ApiError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.message = message

    def extra_payload(self) -> dict[str, Any]:
        return {}


class AuthenticationError(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"


class AuthorizationError(ApiError):
    status_code = 403
    code = "FORBIDDEN"


class ValidationError(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class ConfigError(ApiError):
    status_code = 400
    code = "PDV_LOCATION_NOT_CONFIGURED"


class OutOfRangeError(ApiError):
    status_code = 400
    code = "GPS_OUT_OF_RANGE"

    def __init__(self, *, distance_m: float, limit_m: float):
        super().__init__(
            f"Ubicación fuera de rango ({round(distance_m)}m). Máximo permitido: {_format_meters(limit_m)}m."
        )
        self.distance_m = distance_m
        self.limit_m = limit_m

    def extra_payload(self) -> dict[str, Any]:
        return {"distance": round(self.distance_m, 2), "limit": self.limit_m}


class StoreError(ApiError):
    status_code = 500
    code = "STORE_ERROR"

    def __init__(self, message: str = "Error interno al guardar los cambios."):
        super().__init__(message)


def _format_meters(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": message,
        "code": code,
        "request_id": get_request_id(request),
    }
    if extra:
        payload.update(extra)
    return JSONResponse(status_code=status_code, content=payload, headers=CORS_HEADERS)
