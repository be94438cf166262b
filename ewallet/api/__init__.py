"""
E-Wallet API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    LedgerError, InvalidAmount, NotFound, InsufficientFunds,
    DuplicateUsername, TransientStoreFailure
)
from ..logging_config import get_logger
from ..system import WalletSystem
from .accounts import router as accounts_router
from .wallet import router as wallet_router


# Most specific first; the first isinstance match wins
ERROR_STATUS_CODES = (
    (InvalidAmount, 400),
    (InsufficientFunds, 400),
    (DuplicateUsername, 400),
    (NotFound, 404),
    (TransientStoreFailure, 503),
)

logger = get_logger("ewallet.api")


def status_for_error(error: LedgerError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


def create_app(system: Optional[WalletSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Wallet system to serve; built from configuration when omitted.
            The app closes it on shutdown either way.
    """
    if system is None:
        system = WalletSystem()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.wallet_system.close()

    app = FastAPI(
        title="E-Wallet Ledger API",
        description="Deposits, withdrawals and transfers over a concurrency-safe ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.wallet_system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"error_code": "INVALID_REQUEST", "message": str(exc), "details": {}}
        )

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(wallet_router, prefix="/wallet", tags=["Wallet"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ewallet_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "E-Wallet Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "balance": "/wallet/balance",
                "deposit": "/wallet/deposit",
                "withdraw": "/wallet/withdraw",
                "transfer": "/wallet/transfer",
                "transactions": "/wallet/transactions",
            }
        }

    return app
