"""
FastAPI entrypoint for the SplitLedger backend application.
"""
import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError
from splitledger.core.config import settings
from splitledger.core.exceptions import (
    AccessDeniedError, ConsistencyError, LedgerError, LedgerValidationError, NotFoundError,
    ServiceUnavailableError, SettlementFinalizedError,
)
from splitledger.core.utils import format_error
from splitledger.api.router import api_router
from splitledger.services.cache_service import InMemoryCache

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    LedgerValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AccessDeniedError: status.HTTP_403_FORBIDDEN,
    SettlementFinalizedError: status.HTTP_409_CONFLICT,
    ConsistencyError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ServiceUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

app = FastAPI(
    title="SplitLedger API",
    description="Expense splitting and settlement ledger",
    version="1.0.0",
    debug=settings.DEBUG
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.cache = InMemoryCache()


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    """Map ledger errors to HTTP responses."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break

    if isinstance(exc, ConsistencyError):
        logger.critical(f"Ledger consistency failure on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=status_code, content=format_error("Internal ledger error"))
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")
    return JSONResponse(status_code=status_code, content=format_error(exc.message, exc.details))


@app.exception_handler(OperationalError)
@app.exception_handler(InterfaceError)
async def database_unavailable_handler(request: Request, exc: Exception):
    """Connection failures outside a transaction block, e.g. on reads or auth."""
    logger.error(f"Database unavailable on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=format_error("Ledger temporarily unavailable")
    )


# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": f"{settings.APP_NAME} API is running"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
