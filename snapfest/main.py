"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from snapfest.core.config import settings
from snapfest.core.exceptions import (
    CheckoutError,
    CheckoutInProgressError,
    EmptyCartError,
    NetworkError,
    NotFoundError,
    SnapfestError,
    ValidationError,
    VerificationFailed,
)
from snapfest.core.logging_config import logger, setup_logging
from snapfest.core.middleware import SessionTokenMiddleware
from snapfest.db.session import init_db
from snapfest.routes import cart, checkout, payments
from snapfest.routes.dependencies import SessionRegistry
from snapfest.services.checkout_journal import CheckoutJournal

setup_logging(
    log_level="DEBUG" if settings.DEBUG else "INFO",
    log_file="logs/app.log" if not settings.DEBUG else None
)


def status_for(exc: SnapfestError) -> int:
    """HTTP status for a checkout error"""
    if isinstance(exc, CheckoutError):
        return status_for(exc.cause)
    if isinstance(exc, CheckoutInProgressError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ValidationError, EmptyCartError)):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, VerificationFailed):
        return status.HTTP_402_PAYMENT_REQUIRED
    if isinstance(exc, NetworkError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_502_BAD_GATEWAY


def create_app(registry: Optional[SessionRegistry] = None, initialize_db: bool = True) -> FastAPI:
    """
    Build the application

    Args:
        registry: Session registry to serve; a production one with the
            SQLAlchemy journal is created when omitted
        initialize_db: Create journal tables at startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if initialize_db:
            try:
                init_db()
            except Exception as e:
                logger.error(f"Error initializing database: {str(e)}")
        yield
        await app.state.registry.aclose()
        logger.info("Checkout sessions closed")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="SnapFest - Event booking checkout and payment service",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.registry = registry or SessionRegistry(journal=CheckoutJournal())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SessionTokenMiddleware)

    @app.exception_handler(CheckoutError)
    async def checkout_exception_handler(request: Request, exc: CheckoutError):
        """Aborted checkout; cancellation is reported as a normal outcome"""
        progress = exc.progress.model_dump(by_alias=True) if exc.progress is not None else None
        if exc.silent:
            logger.info(f"Checkout cancelled: {exc.message}")
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content={"status": "cancelled", "progress": progress}
            )
        status_code = status_for(exc)
        logger.error(f"Checkout error: {status_code} - {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.message,
                "status_code": status_code,
                "retryable": exc.retryable,
                "item": exc.item_index,
                "total_items": exc.total_items,
                "step": exc.step,
                "progress": progress,
            }
        )

    @app.exception_handler(SnapfestError)
    async def snapfest_exception_handler(request: Request, exc: SnapfestError):
        status_code = status_for(exc)
        logger.error(f"Checkout core error: {status_code} - {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.message, "status_code": status_code, "retryable": exc.retryable}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions"""
        logger.error(f"HTTP exception: {exc.status_code} - {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "status_code": exc.status_code}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors"""
        logger.error(f"Validation error: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": "Validation error", "details": jsonable_encoder(exc.errors())}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "message": str(exc)}
        )

    app.include_router(cart.router)
    app.include_router(checkout.router)
    app.include_router(payments.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "app_name": settings.APP_NAME,
            "version": settings.APP_VERSION
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "snapfest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
