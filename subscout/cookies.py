from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    """Return the bare host for a cookie domain (``.example.com`` -> ``example.com``)."""
    return (domain or "").strip().lstrip(".").lower()


def domain_matches(cookie_domain: str, host: str) -> bool:
    domain = normalize_domain(cookie_domain)
    host = (host or "").strip().lower()
    if not domain or not host:
        return False
    return host == domain or host.endswith("." + domain)


def path_matches(cookie_path: str, request_path: str) -> bool:
    cookie_path = cookie_path or "/"
    request_path = request_path or "/"
    if request_path == cookie_path:
        return True
    if not request_path.startswith(cookie_path):
        return False
    return cookie_path.endswith("/") or request_path[len(cookie_path)] == "/"


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires_at: float | None = None  # unix seconds, None for session cookies
    secure: bool = False
    http_only: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("cookie name must not be empty")
        if not normalize_domain(self.domain):
            raise ValueError(f"cookie {self.name!r} has an empty domain")

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, normalize_domain(self.domain))

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (time.time() if now is None else now)

    def applies_to(self, url: str, now: float | None = None) -> bool:
        parsed = urlparse(url)
        if self.secure and parsed.scheme != "https":
            return False
        if self.is_expired(now):
            return False
        return domain_matches(self.domain, parsed.hostname or "") and path_matches(self.path, parsed.path)

    # ------------------------------------------------------------------
    # Persisted layout: {Name, Value, Domain, Path, Expires, IsSecure, IsHttpOnly}
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "Name": self.name,
            "Value": self.value,
            "Domain": self.domain,
            "Path": self.path,
            "IsSecure": self.secure,
            "IsHttpOnly": self.http_only,
        }
        if self.expires_at is not None:
            record["Expires"] = int(self.expires_at)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Cookie:
        expires = record.get("Expires")
        return cls(
            name=str(record.get("Name") or ""),
            value=str(record.get("Value") or ""),
            domain=str(record.get("Domain") or ""),
            path=str(record.get("Path") or "/"),
            expires_at=float(expires) if isinstance(expires, (int, float)) and not isinstance(expires, bool) else None,
            secure=bool(record.get("IsSecure", False)),
            http_only=bool(record.get("IsHttpOnly", False)),
        )

    # ------------------------------------------------------------------
    # Playwright cookie dicts
    # ------------------------------------------------------------------

    def to_playwright(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path or "/",
            "expires": float(self.expires_at) if self.expires_at is not None else -1,
            "httpOnly": self.http_only,
            "secure": self.secure,
        }

    @classmethod
    def from_playwright(cls, data: dict[str, Any]) -> Cookie:
        expires = data.get("expires")
        return cls(
            name=str(data.get("name") or ""),
            value=str(data.get("value") or ""),
            domain=str(data.get("domain") or ""),
            path=str(data.get("path") or "/"),
            expires_at=float(expires) if isinstance(expires, (int, float)) and expires > 0 else None,
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("httpOnly", False)),
        )


class CookieJar:
    """Ordered cookie set, deduplicated by (name, normalized domain), last write wins."""

    def __init__(self, cookies: Iterable[Cookie] = ()) -> None:
        self._cookies: dict[tuple[str, str], Cookie] = {}
        self.merge(cookies)

    def __iter__(self) -> Iterator[Cookie]:
        return iter(list(self._cookies.values()))

    def __len__(self) -> int:
        return len(self._cookies)

    def __bool__(self) -> bool:
        return bool(self._cookies)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CookieJar):
            return NotImplemented
        return list(self._cookies.items()) == list(other._cookies.items())

    def __repr__(self) -> str:
        return f"CookieJar({[c.name + '@' + c.domain for c in self]})"

    def set(self, cookie: Cookie) -> None:
        # Re-insert so the ordering reflects the latest write.
        self._cookies.pop(cookie.key, None)
        self._cookies[cookie.key] = cookie

    def merge(self, cookies: Iterable[Cookie]) -> CookieJar:
        for cookie in cookies:
            self.set(cookie)
        return self

    def get(self, name: str, domain: str | None = None) -> Cookie | None:
        if domain is not None:
            return self._cookies.get((name, normalize_domain(domain)))
        for cookie in reversed(list(self._cookies.values())):
            if cookie.name == name:
                return cookie
        return None

    def find(self, predicate: Callable[[Cookie], bool], domain: str | None = None) -> list[Cookie]:
        return [
            c for c in self._cookies.values()
            if predicate(c) and (domain is None or domain_matches(c.domain, normalize_domain(domain)))
        ]

    def active(self, now: float | None = None) -> CookieJar:
        return CookieJar(c for c in self._cookies.values() if not c.is_expired(now))

    def for_url(self, url: str, now: float | None = None) -> list[Cookie]:
        matched = [c for c in self._cookies.values() if c.applies_to(url, now)]
        # Longer paths first, as browsers order the Cookie header.
        return sorted(matched, key=lambda c: len(c.path or "/"), reverse=True)

    def cookie_header(self, url: str, now: float | None = None) -> str:
        seen: set[str] = set()
        parts: list[str] = []
        for cookie in self.for_url(url, now):
            if cookie.name in seen:
                continue
            seen.add(cookie.name)
            parts.append(f"{cookie.name}={cookie.value}")
        return "; ".join(parts)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> bytes:
        records = [c.to_record() for c in self._cookies.values()]
        return json.dumps(records, ensure_ascii=False, indent=2).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes | str) -> CookieJar:
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError("cookie file must contain a JSON array")
        jar = cls()
        for record in data:
            if not isinstance(record, dict):
                continue
            try:
                jar.set(Cookie.from_record(record))
            except ValueError as exc:
                logger.warning("Skipping malformed cookie record: %s", exc)
        return jar
