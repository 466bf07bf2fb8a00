"""
Main FastAPI application for the shipment ingest processor.
"""
import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select

from core.config import get_config, validate_config
from core.database import create_tables, get_db
from core.logger import setup_colored_logging
from api.routers import ingest

setup_colored_logging("processor")
logger = logging.getLogger(__name__)

app = FastAPI(title="Shipment Ingest Processor", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingest.router)  # /api/documents/*


@app.on_event("startup")
async def startup_event():
    """Validate configuration and create tables at startup"""
    config = get_config()
    validate_config()

    try:
        await create_tables()
        logger.info("Database tables created successfully")
    except Exception as e:
        # The service still answers /health so the failure is visible
        logger.error(f"Error creating database tables: {e}", exc_info=True)

    if config.openai_api_key:
        logger.info("OpenAI API key configured - AI mapping and OCR enabled")
    else:
        logger.warning("OpenAI API key not found - synonym mapping only, OCR uploads will fail")


@app.get("/health")
async def health_check():
    """Service health with database and AI status"""
    config = get_config()

    db_status = "unknown"
    try:
        async for db in get_db():
            await db.execute(select(1))
            db_status = "connected"
            break
    except Exception as db_error:
        db_status = f"error: {db_error}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": config.processor_name,
        "version": config.parser_version,
        "timestamp": str(datetime.utcnow()),
        "database": db_status,
        "openai": "configured" if config.openai_api_key else "not_configured",
        "features": {
            "ai_mapping_enabled": config.ai_mapping_enabled,
            "ocr_enabled": config.ocr_enabled,
            "ocr_local_fallback_enabled": config.ocr_local_fallback_enabled,
        },
        "endpoints": {
            "ingest": "/api/documents/ingest",
            "document": "/api/documents/{document_id}",
            "shipments": "/api/documents/{document_id}/shipments",
        },
    }
