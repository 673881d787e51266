"""
Lending API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..errors import LendingError, UnauthorizedError
from ..config import get_config
from ..logging_config import setup_logging
from .auth import LendingSystem
from .admin import router as admin_router
from .books import router as books_router
from .members import router as members_router


# Status code per error kind
ERROR_STATUS = {
    "not_found": 404,
    "out_of_inventory": 409,
    "nothing_to_return": 409,
    "borrowing_limit_exceeded": 409,
    "book_already_exists": 409,
    "member_already_exists": 409,
    "conflict": 409,
    "invalid_inventory_change": 422,
    "invalid_book_data": 422,
    "invalid_member_data": 422,
    "ledger_invariant_violated": 500,
    "store_unavailable": 503,
}


def status_for(error: LendingError) -> int:
    if isinstance(error, UnauthorizedError):
        return 403 if error.authenticated else 401
    return ERROR_STATUS.get(error.kind, 400)


async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.kind, "detail": exc.message}
    )


def create_app(system: Optional[LendingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system else get_config()
    setup_logging(level=config.log_level, log_format=config.log_format)

    app = FastAPI(
        title="Lending Service API",
        description="Catalog inventory and lending ledger",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.lending_system = system or LendingSystem(use_sqlite=config.use_sqlite, config=config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LendingError, lending_error_handler)

    app.include_router(books_router, prefix="/books", tags=["Books"])
    app.include_router(members_router, prefix="/members", tags=["Members"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "lending_api",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        return {
            "name": "Lending Service API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "books": "/books",
                "members": "/members",
                "admin": "/admin",
            }
        }

    return app
