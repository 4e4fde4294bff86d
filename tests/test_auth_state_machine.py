from __future__ import annotations

import asyncio

from subscout.auth import AuthStage, SessionStateMachine
from subscout.cookies import Cookie, CookieJar
from subscout.errors import NavigationFailed
from subscout.models import AuthOutcome
from subscout.services import EA, STEAM
from subscout.storage import CookieStore
from tests.conftest import (
    STEAM_STORE,
    USERDATA_URL,
    FakeDriver,
    FakeDriverFactory,
    steam_login_cookie,
)

_USERDATA = '{"rgWishlist": [10], "rgOwnedApps": [20, 30]}'
_SYNC_URL = STEAM.sync_login_url


def _machine(factory: FakeDriverFactory, store: CookieStore, **kwargs) -> SessionStateMachine:
    kwargs.setdefault("settle_seconds", 0)
    kwargs.setdefault("poll_interval", 0.01)
    return SessionStateMachine(STEAM, factory, store, **kwargs)


class _HangingDriver(FakeDriver):
    async def navigate(self, url: str) -> bool:
        self.navigations.append(url)
        await asyncio.sleep(3600)
        return True


class TestSilentRefresh:
    async def test_success_walks_every_stage_and_saves_merged_jar(self, cookie_store: CookieStore):
        cookie_store.save(
            "steam",
            CookieJar([steam_login_cookie(), steam_login_cookie(STEAM_STORE), Cookie("sessionid", "s", STEAM_STORE)]),
        )
        driver = FakeDriver(pages={USERDATA_URL: _USERDATA})
        factory = FakeDriverFactory(driver)
        machine = _machine(factory, cookie_store)

        result = await machine.refresh()

        assert result.outcome is AuthOutcome.SUCCESS
        assert machine.history == [
            AuthStage.START,
            AuthStage.CHECK_PRIMARY_DOMAIN,
            AuthStage.SYNC_SECONDARY_DOMAIN,
            AuthStage.CONFIRM_ON_TARGET_ENDPOINT,
            AuthStage.SUCCESS,
        ]
        assert driver.navigations == [STEAM.refresh_url, USERDATA_URL]
        assert driver.close_calls == 1
        saved = cookie_store.load("steam")
        assert saved is not None
        assert {c.key for c in saved} == {
            ("steamLoginSecure", "steamcommunity.com"),
            ("steamLoginSecure", STEAM_STORE),
            ("sessionid", STEAM_STORE),
        }

    async def test_missing_jar_needs_login_without_browser(self, cookie_store: CookieStore):
        factory = FakeDriverFactory()
        machine = _machine(factory, cookie_store)

        result = await machine.refresh()

        assert result.outcome is AuthOutcome.NEEDS_LOGIN
        assert factory.created == []

    async def test_missing_login_cookie_needs_login_and_leaves_jar(self, cookie_store: CookieStore):
        original = CookieJar([Cookie("sessionid", "s", "steamcommunity.com")])
        cookie_store.save("steam", original)
        factory = FakeDriverFactory(FakeDriver(pages={USERDATA_URL: _USERDATA}))
        machine = _machine(factory, cookie_store)

        result = await machine.refresh()

        assert result.outcome is AuthOutcome.NEEDS_LOGIN
        assert machine.history[-1] is AuthStage.NEEDS_LOGIN
        assert cookie_store.load("steam") == original

    async def test_guest_userdata_needs_login_and_writes_nothing(self, cookie_store: CookieStore):
        stale = CookieJar([steam_login_cookie(value="stale"), steam_login_cookie(STEAM_STORE, "stale")])
        guest = '{"rgWishlist": [], "rgOwnedPackages": [], "rgOwnedApps": [], "rgIgnoredApps": {}}'
        factory = FakeDriverFactory(FakeDriver(pages={USERDATA_URL: guest}))
        machine = _machine(factory, cookie_store)

        result = await machine.refresh(seed=stale)

        assert result.outcome is AuthOutcome.NEEDS_LOGIN
        assert result.jar is None
        assert machine.history[-2:] == [AuthStage.CONFIRM_ON_TARGET_ENDPOINT, AuthStage.NEEDS_LOGIN]
        assert not cookie_store.exists("steam")

    async def test_secondary_domain_synced_through_login_endpoint(self, cookie_store: CookieStore):
        cookie_store.save("steam", CookieJar([steam_login_cookie()]))
        driver = FakeDriver(
            pages={USERDATA_URL: _USERDATA},
            on_navigate={_SYNC_URL: lambda d: d.add_cookie(steam_login_cookie(STEAM_STORE, "synced"))},
        )
        machine = _machine(FakeDriverFactory(driver), cookie_store)

        result = await machine.refresh()

        assert result.ok
        assert driver.navigations == [STEAM.refresh_url, _SYNC_URL, USERDATA_URL]
        assert result.jar.get("steamLoginSecure", STEAM_STORE).value == "synced"

    async def test_logged_out_marker_on_confirm_endpoint(self, cookie_store: CookieStore):
        cookie_store.save("steam", CookieJar([steam_login_cookie(), steam_login_cookie(STEAM_STORE)]))
        driver = FakeDriver(pages={USERDATA_URL: '<a class="global_login_btn">Sign in</a>'})
        machine = _machine(FakeDriverFactory(driver), cookie_store)

        result = await machine.refresh()

        assert result.outcome is AuthOutcome.NEEDS_LOGIN
        assert machine.history[-2] is AuthStage.CONFIRM_ON_TARGET_ENDPOINT

    async def test_unexpected_json_shape_needs_login(self, cookie_store: CookieStore):
        cookie_store.save("steam", CookieJar([steam_login_cookie(), steam_login_cookie(STEAM_STORE)]))
        driver = FakeDriver(pages={USERDATA_URL: '{"success": false}'})
        machine = _machine(FakeDriverFactory(driver), cookie_store)

        result = await machine.refresh()

        assert result.outcome is AuthOutcome.NEEDS_LOGIN

    async def test_navigation_failure_is_error_and_jar_untouched(self, cookie_store: CookieStore):
        original = CookieJar([steam_login_cookie()])
        cookie_store.save("steam", original)
        driver = FakeDriver(navigate_error=NavigationFailed("HTTP 503"))
        machine = _machine(FakeDriverFactory(driver), cookie_store)

        result = await machine.refresh()

        assert result.outcome is AuthOutcome.ERROR
        assert "503" in result.error
        assert cookie_store.load("steam") == original
        assert driver.close_calls == 1

    async def test_timeout_returns_false_not_exception(self, cookie_store: CookieStore):
        cookie_store.save("steam", CookieJar([steam_login_cookie()]))
        driver = _HangingDriver()
        machine = _machine(FakeDriverFactory(driver), cookie_store, silent_timeout=0.05)

        ok = await machine.refresh_session()

        assert ok is False
        assert machine.stage is AuthStage.NEEDS_LOGIN
        # The abandoned run still releases its browser.
        await asyncio.sleep(0.05)
        assert driver.close_calls == 1

    async def test_seed_jar_replaces_stored_one(self, cookie_store: CookieStore):
        driver = FakeDriver(pages={USERDATA_URL: _USERDATA})
        machine = _machine(FakeDriverFactory(driver), cookie_store)

        result = await machine.refresh(seed=CookieJar([steam_login_cookie(), steam_login_cookie(STEAM_STORE)]))

        assert result.ok
        assert cookie_store.exists("steam")


class TestInteractiveLogin:
    async def test_waits_for_login_cookie_then_confirms(self, cookie_store: CookieStore):
        driver = FakeDriver(pages={USERDATA_URL: _USERDATA})
        factory = FakeDriverFactory(driver)
        machine = _machine(factory, cookie_store)
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, driver.add_cookie, steam_login_cookie())
        loop.call_later(0.05, driver.add_cookie, steam_login_cookie(STEAM_STORE))

        result = await machine.login()

        assert result.ok
        assert factory.headless_flags == [False]
        assert driver.navigations[0] == STEAM.login_url
        assert cookie_store.load("steam") == result.jar

    async def test_closing_the_window_cancels_login(self, cookie_store: CookieStore):
        driver = FakeDriver()
        driver.window_closed = True
        machine = _machine(FakeDriverFactory(driver), cookie_store)

        result = await machine.login()

        assert result.outcome is AuthOutcome.NEEDS_LOGIN
        assert not cookie_store.exists("steam")

    async def test_login_timeout(self, cookie_store: CookieStore):
        machine = _machine(FakeDriverFactory(FakeDriver()), cookie_store, login_timeout=0.05)

        result = await machine.login()

        assert result.outcome is AuthOutcome.NEEDS_LOGIN

    async def test_partner_profile_uses_marker_confirmation(self, cookie_store: CookieStore):
        confirm = EA.confirm_endpoint
        driver = FakeDriver(
            cookies=[Cookie("play_session", "x", "www.ea.com")],
            pages={confirm: "Welcome back to EA Play"},
        )
        machine = SessionStateMachine(EA, FakeDriverFactory(driver), cookie_store, settle_seconds=0)

        result = await machine.login()

        assert result.ok
        assert cookie_store.load("ea").get("play_session") is not None
