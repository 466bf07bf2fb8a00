import uvicorn
import os
import logging
from dotenv import load_dotenv

load_dotenv()

# Colored logging before any other import that logs
from core.logger import setup_colored_logging
setup_colored_logging("processor")

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8001))
    host = os.getenv("HOST", "0.0.0.0")

    if not os.getenv("DATABASE_URL"):
        logger.warning("DATABASE_URL not set - using the local default database")
    else:
        logger.info("Database URL configured")

    workers = int(os.getenv("UVICORN_WORKERS", "2"))

    logger.info(f"Starting Shipment Ingest Processor on {host}:{port} with {workers} workers")
    logger.info(f"Environment: {os.getenv('ENVIRONMENT', 'production')}")

    try:
        uvicorn.run(
            "api.main:app",
            host=host,
            port=port,
            workers=workers,
            reload=False,
            log_level="info",
            access_log=True,
            use_colors=False  # colorlog handles colors
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise
