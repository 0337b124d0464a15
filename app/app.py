from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, UJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.billing.service import seed_plans
from app.api.router import api_router
from app.common.http_response_model import CommonResponse
from app.common.middleware import log_request_middleware
from app.context import AppContext, build_context
from app.database import init_db
from app.logger.logger import logger


def get_app(context: Optional[AppContext] = None) -> FastAPI:
    context = context or build_context()
    settings = context.settings

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0",
        docs_url=f"{settings.API_PREFIX}/docs/",
        redoc_url=f"{settings.API_PREFIX}/redoc/",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        default_response_class=UJSONResponse,
    )
    app.state.context = context

    @app.on_event("startup")
    async def on_startup():
        await init_db(context.engine)
        async with context.session_factory() as session:
            await seed_plans(session, settings)
        logger.info(f"{settings.APP_NAME} started ({settings.APP_ENV})")

    @app.on_event("shutdown")
    async def on_shutdown():
        await context.engine.dispose()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", name="Virtual staging backend service")
    async def root():
        return {
            "message": settings.APP_NAME,
            "version": "1.0",
            "documentation": f"{settings.API_PREFIX}/docs/",
            "openapi": f"{settings.API_PREFIX}/openapi.json",
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "environment": settings.APP_ENV,
        }

    @app.get(f"{settings.API_PREFIX}/health-check", name="Health Check")
    async def health_check():
        return {"message": "I am healthy"}

    app.include_router(router=api_router, prefix=settings.API_PREFIX)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        error_message = exc.detail if exc.detail else "An error occurred."
        status_code = (
            exc.status_code
            if exc.status_code
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        response = CommonResponse(success=False, message=str(error_message), payload=[])
        return JSONResponse(status_code=status_code, content=response.model_dump())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        response = CommonResponse(
            success=False, message="Unprocessable Entity", payload=str(exc)
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(),
        )

    app.middleware("http")(log_request_middleware)

    return app
