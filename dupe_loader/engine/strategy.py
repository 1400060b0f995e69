"""Dataset-size aware choice between synchronous and progressive loading."""

from __future__ import annotations

import structlog

from ..config import PerformanceSettings
from .fetcher import PageRequest, RetryingFetcher


class LoadStrategySelector:
    """Probe the source for its total and pick a loading strategy.

    The probe asks for a single record and reads the pagination total. Any
    probe failure falls back to synchronous loading.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        settings: PerformanceSettings | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.settings = settings or PerformanceSettings()
        self.logger = logger or structlog.get_logger("dupe_loader.strategy")
        self.last_estimate: int | None = None

    async def estimate_total(self) -> int:
        page = await self.fetcher.fetch(PageRequest(page=1, limit=1), max_retries=1)
        self.last_estimate = page.total
        return page.total

    async def should_use_background(self) -> bool:
        try:
            total = await self.estimate_total()
        except Exception as exc:  # noqa: BLE001
            self.last_estimate = None
            self.logger.warning("strategy_probe_failed", error=str(exc), strategy="synchronous")
            return False
        use_background = total >= self.settings.large_dataset_threshold
        self.logger.info(
            "strategy_selected",
            estimated_total=total,
            threshold=self.settings.large_dataset_threshold,
            strategy="progressive" if use_background else "synchronous",
        )
        return use_background


__all__ = ["LoadStrategySelector"]
