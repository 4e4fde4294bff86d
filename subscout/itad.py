from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from subscout.errors import ApiKeyMissing, BatchLookupFailed

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.isthereanydeal.com"


@dataclass(frozen=True)
class SearchHit:
    id: str
    title: str


@dataclass(frozen=True)
class SubEntry:
    name: str
    leaving: str | None = None


@dataclass
class GameSubs:
    id: str
    subs: list[SubEntry] = field(default_factory=list)


class ItadClient:
    """Thin client for the deals API: title search and subscription coverage."""

    def __init__(
        self,
        api_key: str,
        http: aiohttp.ClientSession,
        *,
        base_url: str = DEFAULT_BASE_URL,
        region: str = "GB",
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise ApiKeyMissing("IsThereAnyDeal API key is not configured")
        self._api_key = api_key
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._region = region
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(self, method: str, path: str, params: dict[str, str], payload: Any = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with self._http.request(
                method, url, params={"key": self._api_key, **params}, json=payload, timeout=self._timeout
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise BatchLookupFailed(f"{method} {path} returned HTTP {resp.status}: {text[:200]}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise BatchLookupFailed(f"{method} {path} failed: {exc}") from exc

    async def search(self, title: str, limit: int = 5) -> list[SearchHit]:
        data = await self._request("GET", "/games/search/v1", {"title": title, "limit": str(limit)})
        if not isinstance(data, list):
            raise BatchLookupFailed(f"Unexpected search response for {title!r}")
        hits: list[SearchHit] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            game_id = str(entry.get("id") or "").strip()
            if game_id:
                hits.append(SearchHit(id=game_id, title=str(entry.get("title") or "")))
        logger.debug("Search %r returned %d results", title, len(hits))
        return hits

    async def subscriptions(self, ids: list[str]) -> list[GameSubs]:
        data = await self._request("POST", "/games/subs/v1", {"country": self._region}, payload=list(ids))
        if not isinstance(data, list):
            raise BatchLookupFailed("Unexpected subscription response shape")
        results: list[GameSubs] = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            subs = [
                SubEntry(name=str(sub.get("name") or ""), leaving=sub.get("leaving"))
                for sub in entry.get("subs") or []
                if isinstance(sub, dict) and sub.get("name")
            ]
            results.append(GameSubs(id=str(entry["id"]), subs=subs))
        return results
