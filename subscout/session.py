from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from subscout.auth import SessionStateMachine
from subscout.cookies import CookieJar
from subscout.errors import NeedsLogin, SessionInvalid
from subscout.models import AuthOutcome, Service, Session, SessionStatus
from subscout.services import get_profile
from subscout.storage import CookieStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING_MESSAGE = "{name} cookies not found. Please run 'subscout auth --service {service}' first."
_EXPIRED_MESSAGE = (
    "Session expired and could not be refreshed automatically. "
    "Please run 'subscout auth --service {service}'."
)


class SessionManager:
    """Runs operations against a service session, recovering once from a stale jar.

    On ``SessionInvalid`` the stored jar is deleted, one silent refresh is
    attempted and the operation is retried once. Anything beyond that surfaces
    as ``NeedsLogin``.
    """

    def __init__(
        self,
        cookie_store: CookieStore,
        machines: dict[Service, SessionStateMachine],
    ) -> None:
        self._cookie_store = cookie_store
        self._machines = machines
        self._status: dict[Service, SessionStatus] = {}
        self._locks: dict[Service, asyncio.Lock] = {}

    def _lock(self, service: Service) -> asyncio.Lock:
        lock = self._locks.get(service)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[service] = lock
        return lock

    def session(self, service: Service) -> Session:
        jar = self._cookie_store.load(service.value) or CookieJar()
        status = self._status.get(service)
        if status is None:
            status = SessionStatus.ACTIVE if jar else SessionStatus.UNAUTHENTICATED
        return Session(service=service, status=status, jar=jar)

    def _record(self, service: Service, outcome: AuthOutcome) -> None:
        self._status[service] = {
            AuthOutcome.SUCCESS: SessionStatus.ACTIVE,
            AuthOutcome.NEEDS_LOGIN: SessionStatus.UNAUTHENTICATED,
            AuthOutcome.ERROR: SessionStatus.ERROR,
        }[outcome]

    async def login(self, service: Service) -> bool:
        result = await self._machines[service].login()
        self._record(service, result.outcome)
        return result.ok

    async def refresh(self, service: Service) -> bool:
        # The state machine is the only writer of a service's jar.
        async with self._lock(service):
            result = await self._machines[service].refresh()
        self._record(service, result.outcome)
        return result.ok

    async def run_with_session(self, service: Service, operation: Callable[[], Awaitable[T]]) -> T:
        if not self._cookie_store.exists(service.value):
            raise NeedsLogin(
                service.value,
                _MISSING_MESSAGE.format(name=get_profile(service).display_name, service=service.value),
            )

        try:
            return await operation()
        except SessionInvalid as exc:
            logger.warning("%s session invalid (%s); clearing cookies and refreshing", service.value, exc)
            self._status[service] = SessionStatus.NEEDS_REFRESH

        refreshed = await self._refresh_after_invalid(service)
        if not refreshed:
            raise NeedsLogin(service.value, _EXPIRED_MESSAGE.format(service=service.value))

        try:
            return await operation()
        except SessionInvalid as exc:
            logger.warning("%s session still invalid after refresh: %s", service.value, exc)
            self._cookie_store.clear(service.value)
            self._status[service] = SessionStatus.UNAUTHENTICATED
            raise NeedsLogin(service.value, _EXPIRED_MESSAGE.format(service=service.value)) from exc

    async def _refresh_after_invalid(self, service: Service) -> bool:
        async with self._lock(service):
            stale = self._cookie_store.load(service.value)
            self._cookie_store.clear(service.value)
            outcome = AuthOutcome.NEEDS_LOGIN
            if stale:
                outcome = (await self._machines[service].refresh(seed=stale)).outcome
        self._record(service, outcome)
        return outcome is AuthOutcome.SUCCESS
