"""Run id for the sync currently in progress, readable from any task it spawns."""
from __future__ import annotations

import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Iterator

_CURRENT_RUN: ContextVar[str | None] = ContextVar("sync_run", default=None)


def new_run_id(scope: str, now: datetime | None = None) -> str:
    """``<scope>-<YYYYmmddTHHMMSS>-<4 hex>``, e.g. ``wishlist-20261019T101500-3f2a``."""
    label = "".join(ch if ch.isalnum() else "_" for ch in (scope or "").strip().lower()) or "sync"
    stamp = (now or datetime.now()).strftime("%Y%m%dT%H%M%S")
    return f"{label}-{stamp}-{secrets.token_hex(2)}"


@contextmanager
def sync_run(scope: str) -> Iterator[str]:
    """Tag everything awaited inside the block with a fresh run id.

    Nested runs keep their own id and restore the outer one on exit.
    """
    run_id = new_run_id(scope)
    token = _CURRENT_RUN.set(run_id)
    try:
        yield run_id
    finally:
        _CURRENT_RUN.reset(token)


def current_run_id() -> str:
    return _CURRENT_RUN.get() or "-"
