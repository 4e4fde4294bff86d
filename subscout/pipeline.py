from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from subscout.matcher import CatalogMatcher
from subscout.models import ERROR_SENTINEL, CatalogItem
from subscout.request_context import current_run_id, sync_run
from subscout.resolver import SubscriptionResolver

logger = logging.getLogger(__name__)

ENRICH_CONCURRENCY = 5

NameResolver = Callable[[int], Awaitable[str]]


@dataclass
class EnrichmentReport:
    run_id: str
    items: list[CatalogItem] = field(default_factory=list)

    @property
    def failed(self) -> list[CatalogItem]:
        return [item for item in self.items if item.error]

    @property
    def covered(self) -> list[CatalogItem]:
        return [item for item in self.items if item.covered_by]


class EnrichmentPipeline:
    """Resolves name and external matches per item, then coverage for all of them.

    Per-item work runs with at most ``concurrency`` items in flight. A failing item
    keeps its ``error`` and never aborts the run. Coverage is resolved in one
    batched pass once every item has settled.
    """

    def __init__(
        self,
        name_resolver: NameResolver,
        matcher: CatalogMatcher,
        resolver: SubscriptionResolver,
        concurrency: int = ENRICH_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._resolve_name = name_resolver
        self._matcher = matcher
        self._resolver = resolver
        self._concurrency = concurrency

    async def _enrich_item(self, item: CatalogItem, semaphore: asyncio.Semaphore) -> None:
        async with semaphore:
            try:
                if item.has_placeholder_name:
                    item.display_name = await self._resolve_name(item.external_app_id)
                for candidate in await self._matcher.match(item.display_name):
                    item.add_external_id(candidate.external_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                item.error = str(exc) or type(exc).__name__
                logger.warning(
                    "[run=%s] Failed to enrich %s (AppId: %d): %s",
                    current_run_id(),
                    item.display_name,
                    item.external_app_id,
                    exc,
                )

    async def enrich(self, app_ids: Iterable[int], scope: str = "catalog") -> EnrichmentReport:
        items = [CatalogItem(external_app_id=app_id) for app_id in dict.fromkeys(app_ids)]
        return await self.enrich_items(items, scope)

    async def enrich_items(self, items: list[CatalogItem], scope: str = "catalog") -> EnrichmentReport:
        with sync_run(scope) as run_id:
            logger.info("[run=%s] Enriching %d items (concurrency=%d)", run_id, len(items), self._concurrency)

            semaphore = asyncio.Semaphore(self._concurrency)
            await asyncio.gather(*(self._enrich_item(item, semaphore) for item in items))

            all_ids = [eid for item in items for eid in item.resolved_external_ids]
            coverage = await self._resolver.resolve(all_ids) if all_ids else {}
            for item in items:
                self._join_coverage(item, coverage)

            failed = sum(1 for item in items if item.error)
            logger.info("[run=%s] Enrichment done: %d items, %d failed", run_id, len(items), failed)
            return EnrichmentReport(run_id=run_id, items=items)

    @staticmethod
    def _join_coverage(item: CatalogItem, coverage: dict[str, list[str]]) -> None:
        item.coverage = {}
        item.coverage_unknown = False
        for external_id in item.resolved_external_ids:
            for name in coverage.get(external_id, []):
                if name == ERROR_SENTINEL:
                    item.coverage_unknown = True
                    continue
                item.coverage[name] = True
