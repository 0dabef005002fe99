"""Wiring of the refresh runtime for one application."""

import logging
from dataclasses import dataclass, field

from sysgopher.cache import SampleCache
from sysgopher.commands import CommandRunner
from sysgopher.config import Settings, settings as default_settings
from sysgopher.pipeline import RefreshPipeline
from sysgopher.provider import Provider, get_provider
from sysgopher.scheduler import RefreshScheduler
from sysgopher.uithread import Marshaller
from sysgopher.worker import WorkerPool

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything one application shares between its window, actions and workers."""

    settings: Settings
    marshaller: Marshaller
    pool: WorkerPool
    cache: SampleCache
    provider: Provider
    pipeline: RefreshPipeline | None = None
    scheduler: RefreshScheduler | None = None
    closed: bool = field(default=False, init=False)

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        provider: Provider | None = None,
        platform: str | None = None,
    ) -> "AppContext":
        """
        Build the marshaller, pool, cache and provider.

        Raises:
            InitFailure: no provider exists for the platform.
        """
        settings = settings or default_settings
        marshaller = Marshaller()
        pool = WorkerPool(
            marshaller,
            workers=settings.worker_count,
            probe_concurrency=settings.probe_concurrency,
        )
        cache = SampleCache(ttl=settings.cache_ttl)
        if provider is None:
            provider = get_provider(
                platform,
                runner=CommandRunner(timeout=settings.command_timeout),
                cache=cache,
                pool=pool,
            )
        else:
            cache = provider.cache
        logger.debug("Using %s provider", provider.name)
        return cls(settings=settings, marshaller=marshaller, pool=pool, cache=cache, provider=provider)

    def attach(self, pipeline: RefreshPipeline, interval: float, enabled: bool = True) -> RefreshScheduler:
        """Bind the window's pipeline and create its scheduler."""
        self.pipeline = pipeline
        self.scheduler = RefreshScheduler(self.marshaller, pipeline.run_cycle, interval, enabled=enabled)
        return self.scheduler

    def start(self) -> None:
        """Bind the UI thread, start workers and the auto-refresh timer."""
        self.marshaller.bind()
        self.pool.start()
        if self.scheduler is not None:
            self.scheduler.start()

    def close(self) -> bool:
        """
        Stop the timer, drop pending UI work and shut the pool down.

        Returns:
            False if workers were still busy after the grace period.
        """
        if self.closed:
            return True
        self.closed = True
        if self.scheduler is not None:
            self.scheduler.close()
        self.marshaller.close()
        return self.pool.shutdown(timeout=self.settings.shutdown_grace)
