from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from app.core.background import BackgroundDispatcher
from app.core.config import settings
from app.core.database import Base, async_engine
from app.core.error_handlers import register_exception_handlers
from app.core.locks import KeyedLocks
from app.core.logging_config import setup_logging
from app.core.rate_limit import RateLimiter
from app.modules.otp.router import router as otp_router
from app.modules.loans.router import router as loans_router

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION} ({settings.ENVIRONMENT})")
    async with async_engine.begin() as conn:
        # Create all tables (for development - use Alembic in production)
        await conn.run_sync(Base.metadata.create_all)

    yield

    # Shutdown
    await app.state.dispatcher.drain()
    await async_engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    description="Loan origination: OTP verification, application intake, scoring and offers",
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Process-wide shared state
app.state.rate_limiter = RateLimiter(
    capacity=settings.RATE_LIMIT_OTP_PER_MINUTE,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS
)
app.state.dispatcher = BackgroundDispatcher(max_concurrency=settings.BACKGROUND_MAX_CONCURRENCY)
app.state.locks = KeyedLocks()

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(otp_router)
app.include_router(loans_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "ok",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "background_jobs": app.state.dispatcher.stats()
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }
