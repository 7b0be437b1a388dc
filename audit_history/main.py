import logging

from fastapi import FastAPI

from audit_history.config import get_settings
from audit_history.routers import api_router
from audit_history.services.registry_refresh import registry_refresh_job

settings = get_settings()
log_level_name = (settings.log_level or "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.getLogger("audit_history").setLevel(log_level)

app = FastAPI(title=settings.app_name)

logger = logging.getLogger(__name__)

app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def startup_scheduler() -> None:
    registry_refresh_job.start()


@app.on_event("shutdown")
async def shutdown_scheduler() -> None:
    registry_refresh_job.shutdown()
