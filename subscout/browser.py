from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright_stealth import Stealth

from subscout.cookies import Cookie
from subscout.errors import NavigationFailed, TransientNetworkError, is_transient_network_error

logger = logging.getLogger(__name__)

_stealth = Stealth()

_CONTEXT_KWARGS_BASE: dict = {
    "viewport": {"width": 1280, "height": 900},
    "locale": "en-US",
}

READY_STATE_SCRIPT = "document.readyState"
BODY_TEXT_SCRIPT = "() => document.body ? document.body.innerText : ''"
OUTER_HTML_SCRIPT = "() => document.documentElement ? document.documentElement.outerHTML : ''"


class BrowserSessionDriver(Protocol):
    """The narrow browser contract the session and fetch layers depend on."""

    @property
    def current_url(self) -> str: ...

    async def navigate(self, url: str) -> bool: ...

    async def get_cookies(self, domain_scope: str) -> list[Cookie]: ...

    async def execute_script(self, script: str) -> Any: ...

    async def inject_cookies(self, cookies: Iterable[Cookie]) -> None: ...

    def is_closed(self) -> bool: ...

    async def close(self) -> None: ...


DriverFactory = Callable[[bool], Awaitable[BrowserSessionDriver]]


class PlaywrightDriver:
    """Single-use Chromium session: one playwright instance, one context, one page."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        navigation_timeout_ms: int = 30000,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._navigation_timeout_ms = navigation_timeout_ms
        self._closed = False
        page.on("close", lambda _page: self._mark_closed())

    def _mark_closed(self) -> None:
        self._closed = True

    @property
    def current_url(self) -> str:
        return self._page.url

    async def navigate(self, url: str) -> bool:
        try:
            response = await self._page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self._navigation_timeout_ms,
            )
        except Exception as exc:
            if is_transient_network_error(str(exc)):
                raise TransientNetworkError(f"Navigation to {url} failed: {exc}") from exc
            raise NavigationFailed(f"Navigation to {url} failed: {exc}") from exc
        if response is not None and response.status >= 500:
            raise NavigationFailed(f"Navigation to {url} failed with HTTP {response.status}")
        return True

    async def get_cookies(self, domain_scope: str) -> list[Cookie]:
        host = domain_scope.lstrip(".")
        raw = await self._context.cookies([f"https://{host}"])
        cookies: list[Cookie] = []
        for item in raw:
            try:
                cookies.append(Cookie.from_playwright(dict(item)))
            except ValueError as exc:
                logger.debug("Skipping browser cookie: %s", exc)
        return cookies

    async def execute_script(self, script: str) -> Any:
        return await self._page.evaluate(script)

    async def inject_cookies(self, cookies: Iterable[Cookie]) -> None:
        payload = [c.to_playwright() for c in cookies]
        if payload:
            await self._context.add_cookies(payload)  # type: ignore[arg-type]

    def is_closed(self) -> bool:
        return self._closed or self._page.is_closed()

    async def close(self) -> None:
        try:
            await self._context.close()
        except Exception as exc:
            logger.debug("Failed closing browser context: %s", exc)
        try:
            await self._browser.close()
        except Exception as exc:
            logger.debug("Failed closing browser: %s", exc)
        try:
            await self._playwright.stop()
        except Exception as exc:
            logger.debug("Failed stopping playwright: %s", exc)
        self._closed = True
        logger.info("Browser shut down")


def make_driver_factory(user_agent: str, default_headless: bool = True) -> DriverFactory:
    """Return a factory that launches a dedicated browser per call.

    Silent refresh and fetch fallback honour ``default_headless``; interactive
    login callers pass ``headless=False`` so the user can see the sign-in page.
    """

    async def factory(headless: bool = default_headless) -> BrowserSessionDriver:
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=headless,
                args=["--disable-blink-features=AutomationControlled"],
            )
            context_kwargs = dict(_CONTEXT_KWARGS_BASE)
            context_kwargs["user_agent"] = user_agent
            context = await browser.new_context(**context_kwargs)
            page = await context.new_page()
            await _stealth.apply_stealth_async(page)
        except Exception:
            await playwright.stop()
            raise
        logger.info("Browser started (headless=%s)", headless)
        return PlaywrightDriver(playwright, browser, context, page)

    return factory
