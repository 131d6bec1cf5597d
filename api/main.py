"""Geeta Stores free-gift API: FastAPI entry point.

Registers middleware, error handlers, routers, and lifecycle hooks. The
free-gift vertical exposes an admin router and a customer router.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import install_error_handlers
from api.middleware import AccessLogMiddleware, TenantMiddleware
from core.config import settings
from core.database import close_db, init_db
from core.observability.logging_setup import configure_logging

configure_logging(settings.log_level)
logger = logging.getLogger("geeta.api")

VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    if settings.create_tables:
        await init_db()
    logger.info("Geeta Stores free-gift API started (debug=%s)", settings.debug)
    yield
    await close_db()
    logger.info("Geeta Stores free-gift API shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Geeta Stores Free Gifts",
    description="Tiered free-gift rules: admin CRUD, customer resolution, cart reconciliation",
    version=VERSION,
    lifespan=lifespan,
)

install_error_handlers(app)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Multi-tenant middleware
app.add_middleware(TenantMiddleware)
app.add_middleware(AccessLogMiddleware)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

from verticals.free_gifts.router import admin_router, router as free_gift_router  # noqa: E402

app.include_router(
    admin_router, prefix="/api/admin/free-gift-rules", tags=["Free Gifts (admin)"]
)
app.include_router(free_gift_router, prefix="/api/free-gifts", tags=["Free Gifts"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    return {
        "name": "Geeta Stores Free Gifts",
        "version": VERSION,
        "docs": "/docs",
        "verticals": ["free_gifts"],
    }
