"""Token cleanup service - periodically prunes dead device tokens.

Two kinds of records are removed:
- inactive tokens that have not been used for ``inactive_days``
- tokens whose consecutive failure count reached ``max_failures``
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .registry import TokenRegistry

logger = logging.getLogger(__name__)


class TokenCleanupService:
    """Runs ``TokenRegistry.cleanup`` on a fixed interval."""

    def __init__(
        self,
        registry: TokenRegistry,
        interval_hours: int = 24,
        inactive_days: int = 90,
        max_failures: int = 10,
    ):
        self.registry = registry
        self.interval_hours = interval_hours
        self.inactive_days = inactive_days
        self.max_failures = max_failures
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @classmethod
    def from_settings(cls, settings, registry: TokenRegistry) -> "TokenCleanupService":
        return cls(
            registry=registry,
            interval_hours=settings.cleanup_interval_hours,
            inactive_days=settings.cleanup_inactive_days,
            max_failures=settings.cleanup_max_failures,
        )

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(hours=self.interval_hours),
            id="device_token_cleanup",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"Token cleanup scheduled every {self.interval_hours}h")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
        self._running = False

    async def run_once(self) -> int:
        """Run one cleanup pass; errors are logged so the schedule keeps going."""
        try:
            removed = await self.registry.cleanup(
                inactive_days=self.inactive_days,
                max_failures=self.max_failures,
            )
            logger.info(f"Device token cleanup removed {removed} tokens")
            return removed
        except Exception as e:
            logger.error(f"Error cleaning up device tokens: {e}")
            return 0
