"""API dependencies."""

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException

from leadqueue.config import Environment, settings
from leadqueue.engine import LeaseEngine, create_record_source
from leadqueue.store import create_lease_store

logger = logging.getLogger("leadqueue.api")

_engine: Optional[LeaseEngine] = None


def init_lease_engine(engine: Optional[LeaseEngine] = None) -> LeaseEngine:
    """Install the process-wide engine; builds one from settings when None."""
    global _engine
    _engine = engine or LeaseEngine(
        create_lease_store(),
        create_record_source(),
        lease_ttl_seconds=settings.lease_ttl_seconds,
    )
    return _engine


async def close_lease_engine() -> None:
    global _engine
    if _engine is None:
        return
    engine, _engine = _engine, None
    await engine.store.close()


async def get_lease_engine() -> LeaseEngine:
    """Get the lease engine, building it on first use."""
    if _engine is None:
        return init_lease_engine()
    return _engine


async def get_holder_id(
    x_holder_id: str | None = Header(None, alias="X-Holder-ID"),
) -> str:
    """
    Extract the holder (user) ID from the request.

    The session layer in front of this service is trusted to set it.
    """
    if x_holder_id and x_holder_id.strip():
        return x_holder_id.strip()
    raise HTTPException(
        status_code=400,
        detail={"code": "MISSING_HOLDER", "message": "Missing X-Holder-ID header"},
    )


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> None:
    """
    Verify the shared API key.

    Fails closed: with no key configured and no explicit insecure dev mode,
    every request is rejected.
    """
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[7:]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Use Authorization: Bearer <key> or X-API-Key header",
        )

    if not settings.api_key:
        logger.error("SECURITY VIOLATION: No API key configured. Set LEADQUEUE_API_KEY.")
        raise HTTPException(
            status_code=503,
            detail="Server misconfigured: authentication not properly initialized",
        )

    if not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")


def validate_auth_config() -> None:
    """
    Validate authentication configuration at startup.

    Raises:
        RuntimeError: If configuration is insecure for the current environment
    """
    if settings.allow_insecure_dev and settings.env != Environment.DEVELOPMENT:
        raise RuntimeError(
            f"SECURITY ERROR: allow_insecure_dev=true is only permitted in development. "
            f"Current environment: {settings.env.value}. "
            f"Set LEADQUEUE_ALLOW_INSECURE_DEV=false for {settings.env.value}."
        )

    if not settings.allow_insecure_dev and not settings.api_key:
        raise RuntimeError(
            "SECURITY ERROR: LEADQUEUE_API_KEY is required unless "
            "LEADQUEUE_ALLOW_INSECURE_DEV=true in development."
        )

    if settings.allow_insecure_dev:
        logger.warning(
            "=" * 80 + "\n"
            "WARNING: Running in INSECURE DEV MODE\n"
            "  - Authentication is DISABLED\n"
            "  - Set LEADQUEUE_ALLOW_INSECURE_DEV=false for any deployment\n"
            + "=" * 80
        )
    else:
        logger.info(f"Authentication enabled: shared API key for {settings.env.value}")
