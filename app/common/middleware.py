import time
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from app.common.http_response_model import CommonResponse
from app.logger.logger import logger


async def log_request_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and duration of every request"""
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {e}")
        payload = CommonResponse(success=False, message="Internal Server Error")
        return JSONResponse(status_code=500, content=payload.model_dump())

    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)"
    )
    return response
