"""Lead queue lease service application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadqueue import __version__
from leadqueue.api import router
from leadqueue.api.deps import close_lease_engine, init_lease_engine, validate_auth_config
from leadqueue.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("leadqueue")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting lead queue lease service...")
    logger.info(f"Environment: {settings.env.value}")
    logger.info(f"Lease store: {settings.store_backend.value}, TTL {settings.lease_ttl_seconds}s")

    # Fail fast on insecure configuration
    validate_auth_config()

    engine = init_lease_engine()
    if not await engine.is_configured():
        logger.warning("Lease store did not answer at startup; claims will fail until it does")

    yield

    logger.info("Shutting down lead queue lease service...")
    await close_lease_engine()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Lead Queue",
    description="Shared lead queue with exclusive, time-bounded record leases",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=settings.cors_allowed_headers,
)

app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "leadqueue.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
