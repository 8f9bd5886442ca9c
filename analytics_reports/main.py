"""
Analytics Reports Service

Report generation, multi-format export and scheduled delivery:
- Template based reports over team, player and training data
- PDF, Excel, CSV and HTML exports
- Cron scheduled runs with e-mail delivery
"""

from datetime import datetime, timezone

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from .api import reports_router
from .config import settings
from .logging_config import configure_logging
from .service import ReportingService

configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

logger = structlog.get_logger()

# Initialize FastAPI app
app = FastAPI(
    title="Analytics Reports",
    description="Report generation and scheduled delivery for team analytics",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(reports_router)


@app.on_event("startup")
async def startup_event():
    """Build the reporting service and start the scheduler"""
    logger.info("starting_analytics_reports", port=settings.PORT)

    try:
        service = ReportingService.from_settings(settings)
        app.state.reporting_service = service
        service.start()
        logger.info("analytics_reports_ready", port=settings.PORT)
    except Exception as e:
        logger.error("startup_failed", error=str(e), exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler and let running work finish"""
    logger.info("shutting_down_analytics_reports")

    service = getattr(app.state, "reporting_service", None)
    if service is not None:
        await service.stop()
        logger.info("scheduler_stopped")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    service = getattr(app.state, "reporting_service", None)
    return {
        "status": "healthy" if service is not None else "starting",
        "service": settings.SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "scheduler": "running" if service is not None and service.scheduler.running else "stopped",
    }


@app.get(settings.DOWNLOAD_URL_PREFIX.rstrip("/") + "/{file_name}")
async def download_artifact(file_name: str):
    """Serve a stored artifact by the file name in its download URL"""
    service = app.state.reporting_service
    try:
        path = service.storage.resolve(file_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not path.exists():
        raise HTTPException(status_code=404, detail="Artifact not found")
    return FileResponse(path, filename=file_name)


def main():
    uvicorn.run(
        "analytics_reports.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
