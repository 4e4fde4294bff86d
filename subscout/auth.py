from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable

from subscout.browser import BODY_TEXT_SCRIPT, BrowserSessionDriver, DriverFactory
from subscout.cookies import Cookie, CookieJar
from subscout.errors import NavigationFailed
from subscout.models import AuthOutcome, AuthResult
from subscout.services import ServiceProfile
from subscout.storage import CookieStore

logger = logging.getLogger(__name__)

SILENT_REFRESH_TIMEOUT_SECONDS = 15.0
LOGIN_POLL_SECONDS = 1.0
CONFIRM_SETTLE_SECONDS = 2.0

# Cancelled refresh runs finish their own cleanup in the background.
_abandoned_runs: set[asyncio.Task[Any]] = set()


class AuthStage(str, Enum):
    START = "start"
    CHECK_PRIMARY_DOMAIN = "check_primary_domain"
    SYNC_SECONDARY_DOMAIN = "sync_secondary_domain"
    CONFIRM_ON_TARGET_ENDPOINT = "confirm_on_target_endpoint"
    SUCCESS = "success"
    NEEDS_LOGIN = "needs_login"
    ERROR = "error"


_TERMINAL_OUTCOMES = {
    AuthStage.SUCCESS: AuthOutcome.SUCCESS,
    AuthStage.NEEDS_LOGIN: AuthOutcome.NEEDS_LOGIN,
    AuthStage.ERROR: AuthOutcome.ERROR,
}


def _extract_json_body(body: str) -> Any:
    text = (body or "").strip()
    if "<pre" in text:
        start = text.find(">") + 1
        end = text.rfind("<")
        if 0 < start < end:
            text = text[start:end].strip()
    if not text.startswith(("{", "[")):
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


class SessionStateMachine:
    """Interactive login and silent refresh for one service.

    Stages run in order ``Start -> CheckPrimaryDomain -> SyncSecondaryDomain ->
    ConfirmOnTargetEndpoint`` and end in ``Success``, ``NeedsLogin`` or ``Error``.
    Only a ``Success`` run writes the service's cookie jar.
    """

    def __init__(
        self,
        profile: ServiceProfile,
        driver_factory: DriverFactory,
        cookie_store: CookieStore,
        *,
        silent_timeout: float = SILENT_REFRESH_TIMEOUT_SECONDS,
        poll_interval: float = LOGIN_POLL_SECONDS,
        settle_seconds: float = CONFIRM_SETTLE_SECONDS,
        login_timeout: float | None = None,
        headless: bool = True,
        now: Callable[[], float] | None = None,
    ) -> None:
        self._profile = profile
        self._driver_factory = driver_factory
        self._cookie_store = cookie_store
        self._silent_timeout = silent_timeout
        self._poll_interval = poll_interval
        self._settle_seconds = settle_seconds
        self._login_timeout = login_timeout
        self._headless = headless
        self._now = now
        self.stage = AuthStage.START
        self.history: list[AuthStage] = []

    @property
    def profile(self) -> ServiceProfile:
        return self._profile

    def _enter(self, stage: AuthStage) -> None:
        self.stage = stage
        self.history.append(stage)
        logger.info("[%s auth] stage=%s", self._profile.service.value, stage.value)

    def _finish(self, stage: AuthStage, jar: CookieJar | None = None, error: str | None = None) -> AuthResult:
        self._enter(stage)
        return AuthResult(outcome=_TERMINAL_OUTCOMES[stage], jar=jar, error=error)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def login(self) -> AuthResult:
        """Drive an interactive login. Ends when confirmed or the window is closed."""
        if self._login_timeout is None:
            return await self._run(silent=False)
        try:
            return await asyncio.wait_for(self._run(silent=False), timeout=self._login_timeout)
        except asyncio.TimeoutError:
            logger.warning("[%s auth] interactive login timed out", self._profile.service.value)
            return self._finish(AuthStage.NEEDS_LOGIN, error="interactive login timed out")

    async def refresh(self, seed: CookieJar | None = None) -> AuthResult:
        """Silently revalidate stored cookies, bounded by the refresh deadline.

        ``seed`` replaces the stored jar as the starting cookie set, for callers
        that have already deleted a jar they know to be stale.

        A run that misses the deadline is reported as ``NeedsLogin``; its browser
        is left to shut down on its own rather than being awaited here.
        """
        task = asyncio.create_task(self._run(silent=True, seed=seed))
        done, _ = await asyncio.wait({task}, timeout=self._silent_timeout)
        if task in done:
            return task.result()

        logger.warning(
            "[%s auth] silent refresh timed out after %.1fs",
            self._profile.service.value,
            self._silent_timeout,
        )
        task.cancel()
        _abandoned_runs.add(task)
        task.add_done_callback(_abandoned_runs.discard)
        return self._finish(AuthStage.NEEDS_LOGIN, error="silent refresh timed out")

    async def refresh_session(self) -> bool:
        result = await self.refresh()
        return result.ok

    # ------------------------------------------------------------------
    # Stage driver
    # ------------------------------------------------------------------

    async def _run(self, silent: bool, seed: CookieJar | None = None) -> AuthResult:
        self.history.clear()
        self._enter(AuthStage.START)
        service = self._profile.service.value
        driver: BrowserSessionDriver | None = None
        try:
            if silent:
                stored = seed if seed is not None else self._cookie_store.load(service)
                if not stored:
                    logger.info("[%s auth] no stored cookies to refresh", service)
                    return self._finish(AuthStage.NEEDS_LOGIN, error="no stored session")
                driver = await self._driver_factory(self._headless)
                await driver.inject_cookies(stored.active(self._now() if self._now else None))
                await driver.navigate(self._profile.refresh_url)
            else:
                driver = await self._driver_factory(False)
                await driver.navigate(self._profile.login_url)
            return await self._drive(driver, silent)
        except NavigationFailed as exc:
            logger.error("[%s auth] navigation failed: %s", service, exc)
            return self._finish(AuthStage.ERROR, error=str(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("[%s auth] unexpected failure: %s", service, exc)
            return self._finish(AuthStage.ERROR, error=str(exc))
        finally:
            if driver is not None:
                try:
                    await driver.close()
                except Exception as exc:
                    logger.warning("[%s auth] failed to close browser: %s", service, exc)

    async def _login_cookies(self, driver: BrowserSessionDriver, domain: str) -> list[Cookie]:
        cookies = await driver.get_cookies(domain)
        return [c for c in cookies if self._profile.is_login_cookie(c)]

    async def _drive(self, driver: BrowserSessionDriver, silent: bool) -> AuthResult:
        profile = self._profile
        service = profile.service.value

        self._enter(AuthStage.CHECK_PRIMARY_DOMAIN)
        while not await self._login_cookies(driver, profile.primary_domain):
            if silent:
                logger.info("[%s auth] login cookie missing on %s. Session invalid.", service, profile.primary_domain)
                return self._finish(AuthStage.NEEDS_LOGIN, error="login cookie missing")
            if driver.is_closed():
                logger.info("[%s auth] login window closed before sign-in completed", service)
                return self._finish(AuthStage.NEEDS_LOGIN, error="login window closed")
            await asyncio.sleep(self._poll_interval)
        logger.info("[%s auth] found login cookie on %s", service, profile.primary_domain)

        self._enter(AuthStage.SYNC_SECONDARY_DOMAIN)
        if profile.secondary_domain and not await self._login_cookies(driver, profile.secondary_domain):
            if profile.sync_login_url:
                logger.info(
                    "[%s auth] %s missing login cookie. Navigating to sync endpoint.",
                    service,
                    profile.secondary_domain,
                )
                await driver.navigate(profile.sync_login_url)
                if not await self._login_cookies(driver, profile.secondary_domain):
                    logger.warning(
                        "[%s auth] %s still missing login cookie after sync; relying on endpoint confirmation",
                        service,
                        profile.secondary_domain,
                    )

        self._enter(AuthStage.CONFIRM_ON_TARGET_ENDPOINT)
        await driver.navigate(profile.confirm_endpoint)
        if self._settle_seconds > 0:
            await asyncio.sleep(self._settle_seconds)
        body = str(await driver.execute_script(BODY_TEXT_SCRIPT) or "")
        final_url = driver.current_url

        if profile.is_login_redirect(final_url) or profile.has_logged_out_marker(body):
            logger.info("[%s auth] confirmation endpoint reported a logged-out session (%s)", service, final_url)
            return self._finish(AuthStage.NEEDS_LOGIN, error="logged-out marker on confirmation endpoint")
        if not self._confirms(body):
            logger.info("[%s auth] confirmation endpoint response did not have the expected shape", service)
            return self._finish(AuthStage.NEEDS_LOGIN, error="unexpected confirmation response")

        jar = CookieJar()
        for domain in profile.cookie_domains:
            jar.merge(await driver.get_cookies(domain))
        if not jar.find(profile.is_login_cookie):
            return self._finish(AuthStage.NEEDS_LOGIN, error="login cookie missing after confirmation")

        self._cookie_store.save(service, jar)
        logger.info("[%s auth] session confirmed; %d cookies stored", service, len(jar))
        return self._finish(AuthStage.SUCCESS, jar=jar)

    def _confirms(self, body: str) -> bool:
        profile = self._profile
        if profile.confirm_is_json:
            data = _extract_json_body(body)
            if not isinstance(data, dict):
                return False
            if not all(key in data for key in profile.confirm_json_keys):
                return False
            if profile.confirm_nonempty_keys:
                return any(isinstance(data.get(key), list) and data[key] for key in profile.confirm_nonempty_keys)
            return True
        if profile.confirm_markers:
            return any(marker in body for marker in profile.confirm_markers)
        return True
