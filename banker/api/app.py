"""
Banker API Application Factory

Error bodies are {"detail": "<ErrorKind>: <message>"} so bots can tell
a 500 caused by an already-processed invoice from one caused by the
store.
"""

from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from banker import __version__
from banker.audit import configure_logging
from banker.auth import AuthError
from banker.api.routes import router
from banker.config import get_settings
from banker.core import (
    InsufficientFundsError,
    LedgerError,
    LedgerNotFoundError,
    LedgerValidationError,
)
from banker.orchestrator import BankComponents, create_app_components
from banker.services.storage import StorageError

logger = structlog.get_logger(__name__)

# Checked in order, subclasses before their bases
ERROR_STATUS: dict[type[Exception], int] = {
    AuthError: 403,
    InsufficientFundsError: 402,
    LedgerValidationError: 400,
    LedgerNotFoundError: 404,
    LedgerError: 500,
    StorageError: 500,
}


def error_body(error: Exception) -> dict:
    return {"detail": f"{type(error).__name__}: {error}"}


async def handle_error(request: Request, error: Exception) -> JSONResponse:
    status_code = next(
        (status for kind, status in ERROR_STATUS.items() if isinstance(error, kind)),
        500,
    )
    log = logger.error if status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        status=status_code,
        error_type=type(error).__name__,
        error=str(error),
    )
    return JSONResponse(status_code=status_code, content=error_body(error))


async def handle_request_validation(request: Request, error: RequestValidationError) -> JSONResponse:
    messages = "; ".join(
        f"{'.'.join(str(part) for part in e['loc'][1:])}: {e['msg']}" for e in error.errors()
    )
    logger.info("request_invalid", path=request.url.path, errors=messages)
    return JSONResponse(status_code=400, content={"detail": f"ValidationError: {messages}"})


def create_app(components: Optional[BankComponents] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Banker API",
        description="Virtual-currency ledger: balances, transfers and invoices",
        version=__version__,
    )
    app.state.components = components or create_app_components()

    for kind in ERROR_STATUS:
        app.add_exception_handler(kind, handle_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    app.include_router(router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "ok", "version": __version__}

    return app


def main() -> None:
    """Run the API with uvicorn on APP_PORT."""
    settings = get_settings().app
    configure_logging(settings.log_level)
    logger.info("api_starting", port=settings.port, storage=settings.storage_backend)
    uvicorn.run(
        "banker.api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
