"""Per-service login/session parameters.

Every service goes through the same state machine and fetcher; only the data
below differs between them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from subscout.cookies import Cookie
from subscout.models import Service


@dataclass(frozen=True)
class ServiceProfile:
    service: Service
    display_name: str
    primary_domain: str
    login_url: str
    refresh_url: str
    confirm_endpoint: str
    login_cookie_pattern: str
    secondary_domain: str | None = None
    sync_login_url: str | None = None
    confirm_is_json: bool = False
    confirm_json_keys: tuple[str, ...] = ()
    # At least one of these must be a non-empty list, otherwise the response is a guest session.
    confirm_nonempty_keys: tuple[str, ...] = ()
    confirm_markers: tuple[str, ...] = ()
    login_url_markers: tuple[str, ...] = ("/login", "signin", "login.live.com", "/connect/auth")
    logged_out_markers: tuple[str, ...] = ()
    status_url: str | None = None
    fallback_warmup_url: str | None = None
    _cookie_re: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_cookie_re", re.compile(self.login_cookie_pattern, re.IGNORECASE))

    @property
    def cookie_domains(self) -> tuple[str, ...]:
        if self.secondary_domain:
            return (self.primary_domain, self.secondary_domain)
        return (self.primary_domain,)

    def is_login_cookie(self, cookie: Cookie) -> bool:
        return bool(cookie.value) and bool(self._cookie_re.search(cookie.name))

    def is_login_redirect(self, url: str) -> bool:
        """True when the resolved URL is a sign-in page rather than the requested resource."""
        parsed = urlparse(url or "")
        target = f"{parsed.netloc}{parsed.path}".lower()
        login_host = urlparse(self.login_url).netloc.lower()
        if login_host and login_host != self.primary_domain and parsed.netloc.lower() == login_host:
            return True
        return any(marker in target for marker in self.login_url_markers)

    def has_logged_out_marker(self, body: str) -> bool:
        return any(marker in (body or "") for marker in self.logged_out_markers)

    def is_confirm_url(self, url: str) -> bool:
        return (url or "").rstrip("/").startswith(self.confirm_endpoint.rstrip("/"))


STEAM = ServiceProfile(
    service=Service.STEAM,
    display_name="Steam",
    primary_domain="steamcommunity.com",
    secondary_domain="store.steampowered.com",
    login_url="https://steamcommunity.com/login/home/?goto=",
    refresh_url="https://steamcommunity.com/my/",
    sync_login_url="https://store.steampowered.com/login/checkstoredlogin/?redirectURL=0",
    confirm_endpoint="https://store.steampowered.com/dynamicstore/userdata/",
    confirm_is_json=True,
    confirm_json_keys=("rgOwnedApps",),
    confirm_nonempty_keys=("rgWishlist", "rgOwnedApps"),
    login_cookie_pattern=r"^steamLoginSecure$",
    logged_out_markers=("login_btn_signin", "global_login_btn"),
    fallback_warmup_url="https://store.steampowered.com/",
)

XBOX = ServiceProfile(
    service=Service.XBOX,
    display_name="Xbox",
    primary_domain="www.xbox.com",
    secondary_domain="login.live.com",
    login_url="https://www.xbox.com/en-US/play",
    refresh_url="https://www.xbox.com/en-US/play",
    confirm_endpoint="https://www.xbox.com/en-US/play",
    login_cookie_pattern=r"^XB|RPS",
    logged_out_markers=("Sign in to play",),
    status_url="https://www.xbox.com/en-US/live/gold/my-gold-page",
)

EA = ServiceProfile(
    service=Service.EA,
    display_name="EA",
    primary_domain="www.ea.com",
    secondary_domain="accounts.ea.com",
    login_url="https://www.ea.com/login",
    refresh_url="https://www.ea.com/",
    confirm_endpoint="https://www.ea.com/ea-play/member-benefits",
    login_cookie_pattern=r"^PLAY_SESSION$",
    status_url="https://www.ea.com/ea-play/member-benefits",
)

UBISOFT = ServiceProfile(
    service=Service.UBISOFT,
    display_name="Ubisoft",
    primary_domain="store.ubisoft.com",
    secondary_domain="ubisoft.com",
    login_url="https://store.ubisoft.com/uk/my-account#account-ubisoftplus",
    refresh_url="https://store.ubisoft.com/uk/my-account",
    confirm_endpoint="https://store.ubisoft.com/uk/my-account",
    login_cookie_pattern=r"^ubi.*(ticket|session)",
    confirm_markers=("Hello,", "Welcome", "Ubisoft+"),
    status_url="https://store.ubisoft.com/uk/my-account",
)

PROFILES: dict[Service, ServiceProfile] = {
    profile.service: profile for profile in (STEAM, XBOX, EA, UBISOFT)
}


def get_profile(service: Service | str) -> ServiceProfile:
    if not isinstance(service, Service):
        service = Service.parse(service)
    return PROFILES[service]
