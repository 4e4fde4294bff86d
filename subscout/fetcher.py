from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urljoin

import aiohttp

from subscout.browser import (
    BODY_TEXT_SCRIPT,
    OUTER_HTML_SCRIPT,
    READY_STATE_SCRIPT,
    BrowserSessionDriver,
    DriverFactory,
)
from subscout.cookies import CookieJar
from subscout.errors import NavigationFailed, NeedsLogin, SessionInvalid
from subscout.services import ServiceProfile
from subscout.storage import CookieStore

logger = logging.getLogger(__name__)

READY_ATTEMPTS = 10
READY_INTERVAL_SECONDS = 1.0
SETTLE_SECONDS = 2.0
MAX_REDIRECTS = 10
_REDIRECT_STATUSES = {301, 302, 303, 307, 308}


@dataclass
class FetchResult:
    content: str
    final_url: str
    via_browser: bool = False


def looks_like_json(body: str) -> bool:
    return (body or "").lstrip().startswith(("{", "["))


class ProtectedResourceFetcher:
    """Fetches a URL as the signed-in user.

    A plain HTTP request carrying the stored cookies is tried first. If that is
    rejected (non-2xx, bounced to a login page, a logged-out page, or a JSON
    endpoint answering with markup) the URL is loaded in a dedicated browser
    seeded with the same cookies instead.
    """

    def __init__(
        self,
        profile: ServiceProfile,
        cookie_store: CookieStore,
        driver_factory: DriverFactory,
        http: aiohttp.ClientSession,
        *,
        user_agent: str = "",
        headless: bool = True,
        ready_attempts: int = READY_ATTEMPTS,
        ready_interval: float = READY_INTERVAL_SECONDS,
        settle_seconds: float = SETTLE_SECONDS,
        request_timeout: float = 30.0,
        now: Callable[[], float] | None = None,
    ) -> None:
        self._profile = profile
        self._cookie_store = cookie_store
        self._driver_factory = driver_factory
        self._http = http
        self._user_agent = user_agent
        self._headless = headless
        self._ready_attempts = max(1, ready_attempts)
        self._ready_interval = ready_interval
        self._settle_seconds = settle_seconds
        self._request_timeout = request_timeout
        self._now = now

    @property
    def profile(self) -> ServiceProfile:
        return self._profile

    def _load_jar(self) -> CookieJar:
        service = self._profile.service.value
        jar = self._cookie_store.load(service)
        if not jar:
            raise NeedsLogin(service, f"No stored cookies for {service}")
        return jar.active(self._now() if self._now else None)

    async def fetch(self, url: str, expect_json: bool | None = None) -> FetchResult:
        if expect_json is None:
            expect_json = self._profile.confirm_is_json and self._profile.is_confirm_url(url)
        jar = self._load_jar()

        result = await self._fetch_direct(url, jar, expect_json)
        if result is not None:
            return result

        logger.info("[%s fetch] direct request rejected, falling back to browser: %s",
                    self._profile.service.value, url)
        return await self._fetch_with_browser(url, jar, expect_json)

    # ------------------------------------------------------------------
    # Direct HTTP
    # ------------------------------------------------------------------

    async def _fetch_direct(self, url: str, jar: CookieJar, expect_json: bool) -> FetchResult | None:
        service = self._profile.service.value
        current = url
        timeout = aiohttp.ClientTimeout(total=self._request_timeout)
        try:
            for _ in range(MAX_REDIRECTS + 1):
                headers = {"Accept": "application/json" if expect_json else "text/html,*/*"}
                if self._user_agent:
                    headers["User-Agent"] = self._user_agent
                # Scoped per hop so cookies never leak to a redirect target's domain.
                cookie_header = jar.cookie_header(current, self._now() if self._now else None)
                if cookie_header:
                    headers["Cookie"] = cookie_header

                async with self._http.get(
                    current, headers=headers, allow_redirects=False, timeout=timeout
                ) as resp:
                    if resp.status in _REDIRECT_STATUSES and resp.headers.get("Location"):
                        current = urljoin(current, resp.headers["Location"])
                        if self._profile.is_login_redirect(current):
                            logger.info("[%s fetch] redirected to login page: %s", service, current)
                            return None
                        continue
                    status = resp.status
                    body = await resp.text(errors="replace")
                break
            else:
                logger.warning("[%s fetch] too many redirects for %s", service, url)
                return None
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("[%s fetch] direct request failed: %s", service, exc)
            return None

        if not 200 <= status < 300:
            logger.info("[%s fetch] direct request returned HTTP %d", service, status)
            return None
        if self._profile.is_login_redirect(current):
            return None
        if self._profile.has_logged_out_marker(body):
            logger.info("[%s fetch] direct response is a logged-out page: %s", service, current)
            return None
        if expect_json and not looks_like_json(body):
            logger.info("[%s fetch] expected JSON but got markup from %s", service, current)
            return None
        return FetchResult(content=body, final_url=current)

    # ------------------------------------------------------------------
    # Browser fallback
    # ------------------------------------------------------------------

    async def _wait_until_ready(self, driver: BrowserSessionDriver) -> None:
        for _ in range(self._ready_attempts):
            try:
                if await driver.execute_script(READY_STATE_SCRIPT) == "complete":
                    return
            except Exception as exc:
                logger.debug("readyState check failed: %s", exc)
            await asyncio.sleep(self._ready_interval)
        logger.info("[%s fetch] page never reported ready; reading it anyway", self._profile.service.value)

    async def _fetch_with_browser(self, url: str, jar: CookieJar, expect_json: bool) -> FetchResult:
        service = self._profile.service.value
        driver = await self._driver_factory(self._headless)
        try:
            await driver.inject_cookies(jar)
            if self._profile.fallback_warmup_url:
                await driver.navigate(self._profile.fallback_warmup_url)
                await self._wait_until_ready(driver)
                if self._settle_seconds > 0:
                    await asyncio.sleep(self._settle_seconds)

            await driver.navigate(url)
            if self._settle_seconds > 0:
                await asyncio.sleep(self._settle_seconds)
            await self._wait_until_ready(driver)

            script = BODY_TEXT_SCRIPT if expect_json else OUTER_HTML_SCRIPT
            content = str(await driver.execute_script(script) or "")
            final_url = driver.current_url or url
        except NavigationFailed:
            raise
        except Exception as exc:
            raise NavigationFailed(f"Browser fetch of {url} failed: {exc}") from exc
        finally:
            try:
                await driver.close()
            except Exception as exc:
                logger.warning("[%s fetch] failed to close browser: %s", service, exc)

        if self._profile.is_login_redirect(final_url):
            raise SessionInvalid(service, f"{service} redirected {url} to a login page")
        if self._profile.has_logged_out_marker(content):
            raise SessionInvalid(service, f"{service} returned a logged-out page for {url}")
        return FetchResult(content=content, final_url=final_url, via_browser=True)
