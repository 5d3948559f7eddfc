import uvicorn
from dotenv import load_dotenv
import os
from pathlib import Path
import logging

# Configure logging before any application imports to ensure visibility
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s RUN_DEV.PY - [%(levelname)s] - %(message)s'
)
logger = logging.getLogger("run_dev_script")

TRUTHY = ["true", "1", "yes", "on", "t"]

if __name__ == "__main__":
    project_root = Path(__file__).parent.resolve()
    dotenv_path_explicit = project_root / ".env"

    if dotenv_path_explicit.exists():
        logger.info(f".env file FOUND at: {dotenv_path_explicit}")
        load_dotenv(dotenv_path=dotenv_path_explicit, override=True)
    else:
        logger.warning(f".env file NOT FOUND at: {dotenv_path_explicit}. "
                       "Will rely on OS environment variables or pydantic-settings defaults.")

    # Secrets are only reported as set/unset
    logger.info(f"CLOUDFLARE_D1_API_TOKEN: {'********' if os.getenv('CLOUDFLARE_D1_API_TOKEN') else 'None'}")
    logger.info(f"CLOUDFLARE_ACCT_ID: {'********' if os.getenv('CLOUDFLARE_ACCT_ID') else 'None'}")
    logger.info(f"TENANCY_MODE: {os.getenv('TENANCY_MODE')}")
    logger.info(f"SQLITE_DB_PATH: {os.getenv('SQLITE_DB_PATH')}")
    logger.info(f"DEBUG_MODE: {os.getenv('DEBUG_MODE')}")

    host = os.getenv("DEV_SERVER_HOST", "127.0.0.1")
    port = int(os.getenv("DEV_SERVER_PORT", "8000"))
    uvicorn_log_level = os.getenv("DEV_SERVER_LOG_LEVEL", "info").lower()

    # Reload defaults to the debug mode setting
    debug_mode_bool = os.getenv("DEBUG_MODE", "False").lower() in TRUTHY
    reload_bool = os.getenv("DEV_SERVER_RELOAD", str(debug_mode_bool)).lower() in TRUTHY

    logger.info(f"Starting Uvicorn server on {host}:{port} (log level: {uvicorn_log_level}, reload: {reload_bool})")
    logger.info("App module: d1_tenancy.main:app")

    uvicorn.run(
        "d1_tenancy.main:app",
        host=host,
        port=port,
        log_level=uvicorn_log_level,
        reload=reload_bool
    )
