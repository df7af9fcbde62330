from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

# Import database components
from backoffice.database.database import sync_engine, Base

# Import middleware
from backoffice.common.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from backoffice.common.exceptions import AppendOnlyError

# Import routers
from backoffice.modules.auth.router import auth_router
from backoffice.modules.outlets.router import outlets_router
from backoffice.modules.inventory.router import inventory_router
from backoffice.modules.procurement.router import procurement_router
from backoffice.modules.transfers.router import transfers_router
from backoffice.modules.ledger.router import ledger_router
from backoffice.modules.creditors.router import creditors_router
from backoffice.modules.security.router import security_router
from backoffice.modules.notifications.router import notifications_router

# Import models for table creation
import backoffice.database.models

from backoffice.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Backoffice API",
    description="Multi-outlet restaurant back office: stock transfers, purchasing and supplier ledgers",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.ENVIRONMENT == "production" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppendOnlyError)
async def append_only_handler(request: Request, exc: AppendOnlyError):
    logger.error(f"Blocked write to audit record on {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["Auth"])
app.include_router(outlets_router)
app.include_router(inventory_router)
app.include_router(procurement_router)
app.include_router(transfers_router)
app.include_router(ledger_router)
app.include_router(creditors_router)
app.include_router(security_router)
app.include_router(notifications_router)

# Create database tables (only for development - use migrations in production)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "Backoffice API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Backoffice API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(
        f"Transfer policy: reconcile_quantities={settings.TRANSFER_RECONCILE_QUANTITIES}, "
        f"strict_sku_match={settings.TRANSFER_STRICT_SKU_MATCH}"
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Backoffice API shutting down...")
