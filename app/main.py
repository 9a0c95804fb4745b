"""
OmniSync - FastAPI Application Entry Point
"""

import logging

from fastapi import FastAPI, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.routers import google_sync

# Initialize FastAPI app
settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="OmniSync",
    description="Gmail and Calendar ingestion for the practitioner CRM",
    version="0.1.0",
    debug=settings.debug,
)

# Include routers
app.include_router(google_sync.router)


@app.on_event("startup")
async def startup_event():
    """Start background tasks on application startup."""
    from app.tasks.sync_scheduler import start_scheduler
    start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background tasks on application shutdown."""
    from app.tasks.sync_scheduler import stop_scheduler
    stop_scheduler()


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint that also verifies database connection.
    """
    try:
        # Test database connection
        result = db.execute(text("SELECT 1"))
        result.fetchone()
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "healthy",
        "database": db_status,
        "debug": settings.debug,
        "google_oauth_configured": settings.google_oauth_configured,
        "encryption_configured": settings.encryption_configured,
    }
