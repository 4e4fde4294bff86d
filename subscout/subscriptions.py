"""Best-effort subscription tier detection from partner account pages.

Classification scans rendered page text for known marketing copy. Whenever no
recognisable marker is present the result is ``Unknown``, never a guess.
"""
from __future__ import annotations

import logging
from typing import Iterable, Mapping

from subscout.errors import NeedsLogin, SubscoutError
from subscout.fetcher import ProtectedResourceFetcher
from subscout.models import CatalogItem, Service, SubscriptionState, SubscriptionStatus
from subscout.steam import strip_html

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "Active Subscription (Unknown Type)"

# Checked in order; the first marker found wins.
_XBOX_TIERS = (
    (("Game Pass Ultimate",), "Xbox Game Pass Ultimate"),
    (("PC Game Pass",), "PC Game Pass"),
    (("Xbox Game Pass for Console",), "Xbox Game Pass for Console"),
    (("Game Pass Core", "Xbox Live Gold"), "Xbox Game Pass Core"),
    (("You're a member", "You’re a member"), UNKNOWN_TYPE),
)
_EA_TIERS = (
    (("EA Play Pro",), "EA Play Pro"),
    (("EA Play",), "EA Play"),
)
_UBISOFT_NEGATIVE = ("Subscribe now", "Join Ubisoft+", "Choose your plan", "No active subscription")
_UBISOFT_MANAGE = ("Manage subscription", "Next billing")

# Coverage name fragment -> (service, tier fragments that grant it). Empty means any active tier.
_ACCESS_RULES: tuple[tuple[str, Service, tuple[str, ...]], ...] = (
    ("game pass", Service.XBOX, ("ultimate", "pc")),
    ("ea play", Service.EA, ()),
    ("ubisoft+", Service.UBISOFT, ()),
)


def _contains(text: str, *markers: str) -> bool:
    lowered = text.lower()
    return any(marker.lower() in lowered for marker in markers)


def _first_tier(service: Service, text: str, tiers) -> SubscriptionStatus:
    for markers, tier in tiers:
        if _contains(text, *markers):
            return SubscriptionStatus(service, SubscriptionState.ACTIVE, tier)
    return SubscriptionStatus(service, SubscriptionState.UNKNOWN)


def classify_xbox(text: str) -> SubscriptionStatus:
    return _first_tier(Service.XBOX, text, _XBOX_TIERS)


def classify_ea(text: str) -> SubscriptionStatus:
    return _first_tier(Service.EA, text, _EA_TIERS)


def classify_ubisoft(text: str, final_url: str = "") -> SubscriptionStatus:
    if _contains(text, *_UBISOFT_NEGATIVE):
        return SubscriptionStatus(Service.UBISOFT, SubscriptionState.INACTIVE)
    if _contains(final_url or "", "my-subscription"):
        return SubscriptionStatus(Service.UBISOFT, SubscriptionState.ACTIVE, "Ubisoft+ Premium")
    if _contains(text, *_UBISOFT_MANAGE):
        tier = "Ubisoft+ Classics" if _contains(text, "Classics") else "Ubisoft+ Premium"
        return SubscriptionStatus(Service.UBISOFT, SubscriptionState.ACTIVE, tier)
    if _contains(text, "Active") and _contains(text, "Ubisoft+", "Ubisoft Plus"):
        return SubscriptionStatus(Service.UBISOFT, SubscriptionState.ACTIVE, "Ubisoft+ (Unknown Tier)")
    return SubscriptionStatus(Service.UBISOFT, SubscriptionState.UNKNOWN)


def classify(service: Service, text: str, final_url: str = "") -> SubscriptionStatus:
    if service is Service.XBOX:
        return classify_xbox(text)
    if service is Service.EA:
        return classify_ea(text)
    if service is Service.UBISOFT:
        return classify_ubisoft(text, final_url)
    raise ValueError(f"{service.value} has no subscription tiers")


class SubscriptionStatusChecker:
    def __init__(self, fetchers: Mapping[Service, ProtectedResourceFetcher]) -> None:
        self._fetchers = dict(fetchers)

    async def check(self, service: Service) -> SubscriptionStatus:
        fetcher = self._fetchers.get(service)
        if fetcher is None or not fetcher.profile.status_url:
            return SubscriptionStatus(service, SubscriptionState.UNKNOWN)
        try:
            result = await fetcher.fetch(fetcher.profile.status_url, expect_json=False)
        except NeedsLogin:
            logger.info("No stored session for %s; subscription status unknown", service.value)
            return SubscriptionStatus(service, SubscriptionState.UNKNOWN, "Not signed in")
        except SubscoutError as exc:
            logger.warning("Subscription status check for %s failed: %s", service.value, exc)
            return SubscriptionStatus(service, SubscriptionState.UNKNOWN)

        status = classify(service, strip_html(result.content), result.final_url)
        logger.info("%s subscription: %s", service.value, status.label)
        return status

    async def check_all(self, services: Iterable[Service] | None = None) -> dict[Service, SubscriptionStatus]:
        targets = list(services) if services is not None else [s for s in Service if s is not Service.STEAM]
        return {service: await self.check(service) for service in targets}


def user_has_access(item: CatalogItem, statuses: Mapping[Service, SubscriptionStatus]) -> bool:
    """True when one of the item's covering subscriptions is held by the user."""
    for name in item.covered_by:
        for fragment, service, tiers in _ACCESS_RULES:
            if fragment not in name.lower():
                continue
            status = statuses.get(service)
            if status is None or status.state is not SubscriptionState.ACTIVE:
                continue
            if not tiers or _contains(status.tier, *tiers):
                return True
    return False
