"""
Guide Refresh Scheduler

Reloads the session's guide on a cron schedule so "now playing" keeps working
past the end of the downloaded window. The URL refreshed is the one the guide
was last loaded from, or the configured startup URL.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from iptv_engine.config import settings
from iptv_engine.database import is_initialized
from iptv_engine.exceptions import IPTVEngineError
from iptv_engine.services.session_service import PlaylistSession


logger = logging.getLogger(__name__)

JOB_ID = "epg_refresh"


async def refresh_guide(session: PlaylistSession) -> int | None:
    """
    Reload the guide from its source URL and persist it.

    Returns:
        Number of guide channels loaded, or None when no URL is known

    Raises:
        IPTVEngineError: If fetching or parsing fails; the previous guide is kept
    """
    url = session.epg_url or settings.epg_url
    if not url:
        logger.debug("EPG refresh skipped: no EPG URL known")
        return None

    table = await session.load_epg_url(url)
    if is_initialized():
        await session.save_epg()
    return len(table)


class EPGRefreshScheduler:
    """Cron-driven wrapper around refresh_guide"""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None
        self.session: PlaylistSession | None = None

    async def _refresh_job(self) -> None:
        if self.session is None:
            return

        logger.info("Scheduled EPG refresh triggered")
        try:
            loaded = await refresh_guide(self.session)
            if loaded is not None:
                logger.info(f"Scheduled EPG refresh loaded {loaded} channels")
        except IPTVEngineError as e:
            logger.error(f"Scheduled EPG refresh failed: {e}")
        except Exception as e:
            logger.error(f"Exception in scheduled EPG refresh: {e}", exc_info=True)

    def start(self, session: PlaylistSession) -> None:
        """Schedule refreshes of `session`'s guide"""
        if self.is_running():
            logger.warning("EPG refresh scheduler already running")
            return

        try:
            trigger = CronTrigger.from_crontab(settings.epg_refresh_cron, timezone="UTC")
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", settings.epg_refresh_cron, exc)
            raise

        self.session = session
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._refresh_job,
            trigger=trigger,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.epg_refresh_misfire_grace_sec,
        )
        self.scheduler.start()

        next_time = self.get_next_run_time()
        logger.info(
            "EPG refresh scheduled (%s). Next run: %s",
            settings.epg_refresh_cron,
            next_time.isoformat() if next_time else "unknown",
        )

    def shutdown(self) -> None:
        if self.is_running():
            self.scheduler.shutdown(wait=False)
            logger.info("EPG refresh scheduler stopped")
        self.scheduler = None
        self.session = None

    def is_running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def get_next_run_time(self) -> datetime | None:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None


epg_scheduler = EPGRefreshScheduler()
