"""Scheduler for recurring sync jobs.

This module provides:
- SyncScheduler: APScheduler jobs for the daily download, the periodic
  upload scan and the power-source check
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

UPLOAD_SCAN_INTERVAL = 5.0  # seconds
POWER_CHECK_INTERVAL = 20.0  # seconds


class SyncScheduler:
    """Background scheduler driving the coordinator.

    Jobs:
    - daily download at a fixed time of day (optional)
    - upload scan every UPLOAD_SCAN_INTERVAL seconds (optional)
    - power check every POWER_CHECK_INTERVAL seconds (optional)
    """

    def __init__(
        self,
        on_daily_download: Callable[[], object] | None = None,
        on_upload_scan: Callable[[], object] | None = None,
        on_power_check: Callable[[], object] | None = None,
        daily_time: tuple[int, int] | None = None,
        upload_interval: float = UPLOAD_SCAN_INTERVAL,
        power_interval: float = POWER_CHECK_INTERVAL,
    ) -> None:
        """Initialize the scheduler.

        Args:
            on_daily_download: Job for the daily download.
            on_upload_scan: Job for the periodic upload scan.
            on_power_check: Job for the power-source check.
            daily_time: (hour, minute) of the daily download; None disables it.
            upload_interval: Seconds between upload scans.
            power_interval: Seconds between power checks.
        """
        self._on_daily_download = on_daily_download
        self._on_upload_scan = on_upload_scan
        self._on_power_check = on_power_check
        self._daily_time = daily_time
        self._upload_interval = upload_interval
        self._power_interval = power_interval
        self._scheduler: BackgroundScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def job_ids(self) -> list[str]:
        """IDs of the scheduled jobs."""
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    @staticmethod
    def _guarded(name: str, func: Callable[[], object]) -> Callable[[], None]:
        def job() -> None:
            try:
                func()
            except Exception:
                logger.exception(f"Error during scheduled {name}")

        return job

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()

        if self._on_daily_download and self._daily_time is not None:
            hour, minute = self._daily_time
            self._scheduler.add_job(
                self._guarded("download", self._on_daily_download),
                trigger=CronTrigger(hour=hour, minute=minute),
                id="daily_download",
                name="Daily download",
                replace_existing=True,
            )
            logger.info("Daily download scheduled at %02d:%02d", hour, minute)

        if self._on_upload_scan:
            self._scheduler.add_job(
                self._guarded("upload scan", self._on_upload_scan),
                trigger=IntervalTrigger(seconds=self._upload_interval),
                id="upload_scan",
                name="Periodic upload scan",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        if self._on_power_check:
            self._scheduler.add_job(
                self._guarded("power check", self._on_power_check),
                trigger=IntervalTrigger(seconds=self._power_interval),
                id="power_check",
                name="Power source check",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self._scheduler.start()
        logger.info("Sync scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Sync scheduler stopped")
