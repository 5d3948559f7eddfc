# d1_tenancy/main.py
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from dotenv import load_dotenv
load_dotenv()

from .settings import settings
from .core.provider import tenancy_provider
from .errors import (
    CloudflareD1MultiTenancyError,
    MissingCredentialsError,
    ProviderError,
    TenantAlreadyExistsError,
    TenantNotFoundError,
)
from .storage.sqlite_base import close_sqlite_db_connection, get_sqlite_db_connection
from .tenants.endpoints import tenants_admin_router

# Configure logging based on debug mode setting
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else "INFO",
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG if settings.debug_mode else logging.INFO)


def error_status_code(error: CloudflareD1MultiTenancyError) -> int:
    """HTTP status used to report a multi-tenancy error."""
    if isinstance(error, TenantNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, TenantAlreadyExistsError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, (ProviderError, MissingCredentialsError)):
        return status.HTTP_502_BAD_GATEWAY
    cause = getattr(error, "cause", None)
    if isinstance(cause, (ProviderError, MissingCredentialsError)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def d1_tenancy_app_lifespan(app_instance: FastAPI):
    """
    Open the main database and build the shared multi-tenancy instance on
    startup; release the HTTP client and database connection on shutdown.
    """
    logger.info("Application startup initiated.")
    try:
        await get_sqlite_db_connection()
        logger.info("SQLite main database connection initialized.")
        tenancy = await tenancy_provider.get()
        logger.info(f"Multi-tenancy ready in '{tenancy.mode.value}' mode.")
    except Exception as e:
        logger.error(f"Error during startup initialization: {e}", exc_info=True)
        raise

    yield

    logger.info("Application shutdown initiated.")
    try:
        await tenancy_provider.close()
    except Exception as e_td:
        logger.error(f"Teardown error: {e_td}", exc_info=True)
    await close_sqlite_db_connection()
    logger.info("All components torn down.")


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=d1_tenancy_app_lifespan,
)


@app.exception_handler(CloudflareD1MultiTenancyError)
async def multi_tenancy_error_handler(request: Request, exc: CloudflareD1MultiTenancyError) -> JSONResponse:
    status_code = error_status_code(exc)
    if status_code >= 500:
        logger.error(f"API: {request.method} {request.url.path} failed with {exc.code}: {exc.message}")
    else:
        logger.warning(f"API: {request.method} {request.url.path} rejected with {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": exc.message})


app.include_router(tenants_admin_router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.app_name, "tenancy_mode": settings.tenancy_mode}
