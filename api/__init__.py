"""REST API module for the auction platform.

This module provides HTTP endpoints for:
- Wallet authentication and session management
- Browsing, searching and creating property listings
- Bidding, settlement and closing of auctions
- Account profiles, balances and activity
"""

import logging
import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings_conf
from store import get_store
from workers.unsold_listings import close_unsold_listings_task
from .errors import error_body

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("Initializing API...")
    store = get_store()
    await store.open()

    sweep_task = asyncio.create_task(close_unsold_listings_task())

    yield

    # Shutdown
    logger.info("Shutting down API...")
    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass
    await store.close()

# Create FastAPI app
app = FastAPI(
    title=f"{settings_conf['platform_name']} API",
    description="REST API for wallet-authenticated property auctions",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Return error bodies as {"error", "message", ...} instead of {"detail"}."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = error_body("HTTPError", str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, 'headers', None)
    )

# Root endpoint - register this BEFORE other routers
@app.get("/")
async def root():
    return {
        "name": app.title,
        "version": app.version,
        "status": "running",
        "store_backend": settings_conf['store_backend']
    }

# Import and include all routers
from .auth import router as auth_router
from .listings import router as listings_router
from .profile import router as profile_router

# Include all routers
app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(profile_router)
