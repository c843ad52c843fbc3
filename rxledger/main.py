from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rxledger.api.v1.api import api_router
from rxledger.core.config import Settings, get_settings
from rxledger.core.exceptions import (
    BaseCustomException,
    create_error_response,
    handle_validation_error,
)
from rxledger.infrastructure.ledger import create_ledger
from rxledger.infrastructure.ledger.base import LedgerService

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, ledger: Optional[LedgerService] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.ledger is None
        if owned:
            app.state.ledger = create_ledger(settings)
        try:
            yield
        finally:
            if owned:
                app.state.ledger.close()
                app.state.ledger = None
                logger.info("Ledger connection closed")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.ledger = ledger

    # Set all CORS enabled origins
    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(BaseCustomException)
    async def custom_exception_handler(request: Request, exc: BaseCustomException):
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(exc, request_id=request.headers.get("x-request-id")),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        error = handle_validation_error(exc)
        return JSONResponse(
            status_code=error.status_code,
            content=create_error_response(error, request_id=request.headers.get("x-request-id")),
        )

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "ledger_backend": settings.LEDGER_BACKEND}

    return app


app = create_app()
