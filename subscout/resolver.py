from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Protocol

from subscout.itad import GameSubs
from subscout.models import ERROR_SENTINEL

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
MAX_BATCHES_IN_FLIGHT = 2


class CoverageClient(Protocol):
    async def subscriptions(self, ids: list[str]) -> list[GameSubs]: ...


def unique_ids(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for raw in ids:
        game_id = (raw or "").strip()
        if game_id and game_id not in seen:
            seen.add(game_id)
            ordered.append(game_id)
    return ordered


class SubscriptionResolver:
    """Maps external ids to the subscriptions currently covering them.

    A failed batch maps each of its ids to ``[ERROR_SENTINEL]`` so callers can
    tell "not covered" (empty list) apart from "coverage unknown".
    """

    def __init__(
        self,
        client: CoverageClient,
        batch_size: int = BATCH_SIZE,
        max_in_flight: int = MAX_BATCHES_IN_FLIGHT,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self._client = client
        self._batch_size = batch_size
        self._max_in_flight = max_in_flight

    async def _resolve_batch(self, batch: list[str], semaphore: asyncio.Semaphore) -> dict[str, list[str]]:
        try:
            async with semaphore:
                entries = await self._client.subscriptions(batch)
        except Exception as exc:
            logger.warning("Subscription lookup failed for %d ids (%s...): %s", len(batch), batch[0], exc)
            return {game_id: [ERROR_SENTINEL] for game_id in batch}

        results: dict[str, list[str]] = {game_id: [] for game_id in batch}
        for entry in entries:
            if entry.id not in results:
                continue
            for sub in entry.subs:
                if sub.leaving is None and sub.name not in results[entry.id]:
                    results[entry.id].append(sub.name)
        return results

    async def resolve(self, ids: Iterable[str]) -> dict[str, list[str]]:
        ordered = unique_ids(ids)
        if not ordered:
            return {}
        batches = [ordered[i:i + self._batch_size] for i in range(0, len(ordered), self._batch_size)]
        logger.info(
            "Resolving coverage for %d ids in %d batches (max %d in flight)",
            len(ordered),
            len(batches),
            self._max_in_flight,
        )
        semaphore = asyncio.Semaphore(self._max_in_flight)
        merged: dict[str, list[str]] = {}
        for partial in await asyncio.gather(*(self._resolve_batch(b, semaphore) for b in batches)):
            merged.update(partial)
        return merged
