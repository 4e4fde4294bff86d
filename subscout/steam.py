from __future__ import annotations

import asyncio
import html
import json
import logging
import re
from typing import Any

import aiohttp

from subscout.database import Database
from subscout.errors import SessionInvalid
from subscout.fetcher import ProtectedResourceFetcher
from subscout.models import CatalogKind, placeholder_name

logger = logging.getLogger(__name__)

USERDATA_URL = "https://store.steampowered.com/dynamicstore/userdata/"
APPDETAILS_URL = "https://store.steampowered.com/api/appdetails/"

_LOGIN_MARKERS = ("login_btn_signin", "global_login_btn")
_PRE_RE = re.compile(r"<pre[^>]*>(.*?)</pre>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")

_CATALOG_KEYS = {
    CatalogKind.WISHLIST: "rgWishlist",
    CatalogKind.OWNED: "rgOwnedApps",
}


def unwrap_pre(body: str) -> str:
    """Browser-rendered JSON arrives wrapped in ``<pre>``; return the bare text."""
    match = _PRE_RE.search(body or "")
    if match:
        return html.unescape(match.group(1)).strip()
    return (body or "").strip()


def strip_html(text: str) -> str:
    return re.sub(r"\s+", " ", html.unescape(_TAG_RE.sub(" ", text or ""))).strip()


def _app_ids(values: Any) -> list[int]:
    ids: list[int] = []
    if not isinstance(values, list):
        return ids
    for value in values:
        try:
            app_id = int(value)
        except (TypeError, ValueError):
            continue
        if app_id not in ids:
            ids.append(app_id)
    return ids


def parse_userdata(body: str, kind: CatalogKind) -> list[int]:
    """Extract app ids of ``kind`` from a userdata response.

    Raises SessionInvalid for login pages and for the guest fingerprint (both
    wishlist and owned collections empty).
    """
    if any(marker in (body or "") for marker in _LOGIN_MARKERS):
        raise SessionInvalid("steam", "Steam returned a login page instead of user data")

    text = unwrap_pre(body)
    if not text.startswith("{"):
        logger.warning("Steam userdata response was not JSON (%d chars)", len(text))
        return []
    try:
        data = json.loads(text)
    except ValueError as exc:
        logger.warning("Failed to parse Steam userdata: %s", exc)
        return []
    if not isinstance(data, dict):
        return []

    collections = {key: _app_ids(data.get(key)) for key in _CATALOG_KEYS.values()}
    if not any(collections.values()):
        raise SessionInvalid("steam", "Steam user data is empty (guest session)")
    return collections[_CATALOG_KEYS[kind]]


class SteamCatalog:
    """Catalog ids from the signed-in Steam account plus cached store metadata."""

    def __init__(
        self,
        fetcher: ProtectedResourceFetcher,
        http: aiohttp.ClientSession,
        db: Database | None = None,
        *,
        language: str = "en",
        country: str = "us",
        userdata_url: str = USERDATA_URL,
        appdetails_url: str = APPDETAILS_URL,
    ) -> None:
        self._fetcher = fetcher
        self._http = http
        self._db = db
        self._language = language
        self._country = country
        self._userdata_url = userdata_url
        self._appdetails_url = appdetails_url

    async def fetch_catalog(self, kind: CatalogKind) -> list[int]:
        result = await self._fetcher.fetch(self._userdata_url, expect_json=True)
        ids = parse_userdata(result.content, kind)
        logger.info("Fetched %d %s app ids (via %s)", len(ids), kind.value,
                    "browser" if result.via_browser else "http")
        return ids

    async def _appdetails(self, app_id: int) -> dict[str, Any] | None:
        params = {"appids": str(app_id), "cc": self._country, "l": self._language}
        try:
            async with self._http.get(
                self._appdetails_url, params=params, timeout=aiohttp.ClientTimeout(total=15)
            ) as resp:
                if resp.status != 200:
                    logger.debug("appdetails for %d returned HTTP %d", app_id, resp.status)
                    return None
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("appdetails lookup for %d failed: %s", app_id, exc)
            return None

        entry = payload.get(str(app_id)) if isinstance(payload, dict) else None
        if not isinstance(entry, dict) or not entry.get("success"):
            return None
        data = entry.get("data")
        return data if isinstance(data, dict) else None

    async def resolve_name(self, app_id: int) -> str:
        if self._db is not None:
            cached = await self._db.get_metadata("name", str(app_id))
            if cached:
                return cached

        data = await self._appdetails(app_id)
        name = str((data or {}).get("name") or "").strip()
        if not name:
            return placeholder_name(app_id)

        if self._db is not None:
            await self._db.set_metadata("name", str(app_id), name)
            description = strip_html(str(data.get("short_description") or ""))
            if description:
                await self._db.set_metadata("description", str(app_id), description)
            header = str(data.get("header_image") or "")
            if header:
                await self._db.set_metadata("header", str(app_id), header)
        return name
