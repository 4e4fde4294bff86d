from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from subscout.cookies import CookieJar

ERROR_SENTINEL = "Error"


class Service(str, Enum):
    STEAM = "steam"      # primary storefront, owns the catalog
    XBOX = "xbox"
    EA = "ea"
    UBISOFT = "ubisoft"

    @classmethod
    def parse(cls, value: str) -> Service:
        text = (value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"Unknown service: {value!r}")


class SessionStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    ACTIVE = "active"
    NEEDS_REFRESH = "needs_refresh"
    ERROR = "error"


class AuthOutcome(str, Enum):
    SUCCESS = "success"
    NEEDS_LOGIN = "needs_login"
    ERROR = "error"


class CatalogKind(str, Enum):
    WISHLIST = "wishlist"
    OWNED = "owned"


class SubscriptionState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


@dataclass
class Session:
    service: Service
    status: SessionStatus = SessionStatus.UNAUTHENTICATED
    jar: CookieJar = field(default_factory=CookieJar)


@dataclass
class AuthResult:
    outcome: AuthOutcome
    jar: CookieJar | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.SUCCESS


@dataclass(frozen=True)
class MatchCandidate:
    external_id: str
    normalized_title: str
    score: int


@dataclass
class CatalogItem:
    external_app_id: int
    display_name: str = ""
    resolved_external_ids: list[str] = field(default_factory=list)
    coverage: dict[str, bool] = field(default_factory=dict)
    coverage_unknown: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = placeholder_name(self.external_app_id)

    @property
    def has_placeholder_name(self) -> bool:
        return self.display_name == placeholder_name(self.external_app_id)

    @property
    def covered_by(self) -> list[str]:
        return sorted(name for name, covered in self.coverage.items() if covered)

    def add_external_id(self, external_id: str) -> None:
        if external_id and external_id not in self.resolved_external_ids:
            self.resolved_external_ids.append(external_id)


@dataclass
class SubscriptionStatus:
    service: Service
    state: SubscriptionState
    tier: str = ""

    @property
    def label(self) -> str:
        if self.state is SubscriptionState.ACTIVE:
            return self.tier or "Active Subscription (Unknown Type)"
        if self.state is SubscriptionState.INACTIVE:
            return "None"
        return self.tier or "Unknown"


def placeholder_name(app_id: int) -> str:
    return f"AppID {app_id}"
