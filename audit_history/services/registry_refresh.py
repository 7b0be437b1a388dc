from __future__ import annotations

import logging
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from audit_history.config import get_settings
from audit_history.database import SessionLocal
from audit_history.services.metadata_registry import MetadataRegistry, metadata_registry

logger = logging.getLogger(__name__)

JOB_ID = "audit-registry-refresh"


class RegistryRefreshJob:
    """Periodically reload the registry snapshot so registrations made by other processes are picked up."""

    def __init__(
        self,
        registry: MetadataRegistry = metadata_registry,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: int | None = None,
    ) -> None:
        self._registry = registry
        self._session_factory = session_factory
        self._interval_seconds = interval_seconds
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def interval_seconds(self) -> int:
        if self._interval_seconds is not None:
            return self._interval_seconds
        return get_settings().registry_refresh_seconds

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        interval = self.interval_seconds
        if interval <= 0:
            logger.info("Registry refresh disabled")
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.start()
        self._scheduler.add_job(
            self.run,
            trigger=IntervalTrigger(seconds=interval),
            id=JOB_ID,
            replace_existing=True,
        )
        logger.info("Registry refresh scheduled every %s seconds", interval)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

    def run(self) -> None:
        try:
            self._registry.refresh(self._session_factory)
        except SQLAlchemyError:
            logger.exception("Registry refresh failed; the next capture reloads on demand")


registry_refresh_job = RegistryRefreshJob()
