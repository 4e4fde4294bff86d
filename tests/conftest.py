from __future__ import annotations

from typing import Callable, Iterable

import pytest

from subscout.browser import BODY_TEXT_SCRIPT, OUTER_HTML_SCRIPT, READY_STATE_SCRIPT
from subscout.cookies import Cookie, domain_matches
from subscout.storage import CookieStore, FileKeyValueStore

STEAM_COMMUNITY = "steamcommunity.com"
STEAM_STORE = "store.steampowered.com"
USERDATA_URL = "https://store.steampowered.com/dynamicstore/userdata/"


def steam_login_cookie(domain: str = STEAM_COMMUNITY, value: str = "76561198000000000%7C%7Ctoken") -> Cookie:
    return Cookie(name="steamLoginSecure", value=value, domain=domain, secure=True, http_only=True)


class FakeDriver:
    """In-memory stand-in for a browser session.

    ``pages`` maps a URL to the body served for it, ``redirects`` maps a URL to
    where navigation ends up, and ``on_navigate`` hooks mutate the driver (for
    example to drop cookies the way a sync endpoint would).
    """

    def __init__(
        self,
        cookies: Iterable[Cookie] = (),
        pages: dict[str, str] | None = None,
        redirects: dict[str, str] | None = None,
        on_navigate: dict[str, Callable[[FakeDriver], None]] | None = None,
        ready_state: str = "complete",
        navigate_error: Exception | None = None,
    ) -> None:
        self.cookies: list[Cookie] = list(cookies)
        self.pages = dict(pages or {})
        self.redirects = dict(redirects or {})
        self.on_navigate = dict(on_navigate or {})
        self.ready_state = ready_state
        self.navigate_error = navigate_error
        self.navigations: list[str] = []
        self.injected: list[Cookie] = []
        self.scripts: list[str] = []
        self.window_closed = False
        self.close_calls = 0
        self._url = "about:blank"

    @property
    def current_url(self) -> str:
        return self._url

    def add_cookie(self, cookie: Cookie) -> None:
        self.cookies = [c for c in self.cookies if c.key != cookie.key] + [cookie]

    async def navigate(self, url: str) -> bool:
        self.navigations.append(url)
        if self.navigate_error is not None:
            raise self.navigate_error
        self._url = self.redirects.get(url, url)
        hook = self.on_navigate.get(url)
        if hook is not None:
            hook(self)
        return True

    async def get_cookies(self, domain_scope: str) -> list[Cookie]:
        return [c for c in self.cookies if domain_matches(c.domain, domain_scope.lstrip("."))]

    async def execute_script(self, script: str):
        self.scripts.append(script)
        if script == READY_STATE_SCRIPT:
            return self.ready_state
        if script in (BODY_TEXT_SCRIPT, OUTER_HTML_SCRIPT):
            return self.pages.get(self._url, "")
        return None

    async def inject_cookies(self, cookies: Iterable[Cookie]) -> None:
        for cookie in cookies:
            self.injected.append(cookie)
            self.add_cookie(cookie)

    def is_closed(self) -> bool:
        return self.window_closed or self.close_calls > 0

    async def close(self) -> None:
        self.close_calls += 1


class FakeDriverFactory:
    """Hands out prepared drivers in order and records the headless flag of each call."""

    def __init__(self, *drivers: FakeDriver) -> None:
        self.drivers = list(drivers)
        self.created: list[FakeDriver] = []
        self.headless_flags: list[bool] = []

    async def __call__(self, headless: bool = True) -> FakeDriver:
        self.headless_flags.append(headless)
        driver = self.drivers.pop(0) if self.drivers else FakeDriver()
        self.created.append(driver)
        return driver


@pytest.fixture
def mock_config(tmp_path):
    """Create a Config with temporary paths."""
    from subscout.config import Config

    return Config(
        itad_api_key="test-key",
        storage_dir=tmp_path / "storage",
        silent_refresh_timeout_seconds=2.0,
    )


@pytest.fixture
def cookie_store(tmp_path) -> CookieStore:
    return CookieStore(FileKeyValueStore(tmp_path / "auth_tokens"))


@pytest.fixture
async def db(tmp_path):
    """Create an initialized Database for testing."""
    from subscout.database import Database

    database = Database(tmp_path / "test.db")
    await database.init()
    yield database
    await database.close()
