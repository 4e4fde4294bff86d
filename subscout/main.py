from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import aiohttp

from subscout.auth import SessionStateMachine
from subscout.browser import DriverFactory, make_driver_factory
from subscout.config import Config
from subscout.database import Database
from subscout.errors import ApiKeyMissing, NavigationFailed, NeedsLogin, SubscoutError, TransientNetworkError
from subscout.fetcher import ProtectedResourceFetcher
from subscout.itad import ItadClient
from subscout.matcher import CatalogMatcher
from subscout.models import CatalogItem, CatalogKind, Service
from subscout.pipeline import EnrichmentPipeline
from subscout.resolver import SubscriptionResolver
from subscout.services import PROFILES, get_profile
from subscout.session import SessionManager
from subscout.steam import SteamCatalog
from subscout.storage import CookieStore, FileKeyValueStore
from subscout.subscriptions import SubscriptionStatusChecker, user_has_access

logger = logging.getLogger(__name__)

PROG = "subscout"
_SERVICE_CHOICES = [s.value for s in Service]
_PARTNERS = [Service.XBOX, Service.EA, Service.UBISOFT]


class UsageError(SubscoutError):
    """Bad command-line input."""


@dataclass
class App:
    config: Config
    db: Database
    http: aiohttp.ClientSession
    cookie_store: CookieStore
    fetchers: dict[Service, ProtectedResourceFetcher]
    sessions: SessionManager

    @classmethod
    def build(
        cls,
        config: Config,
        db: Database,
        http: aiohttp.ClientSession,
        driver_factory: DriverFactory,
    ) -> App:
        cookie_store = CookieStore(FileKeyValueStore(config.auth_tokens_dir))
        fetchers: dict[Service, ProtectedResourceFetcher] = {}
        machines: dict[Service, SessionStateMachine] = {}
        for service, profile in PROFILES.items():
            fetchers[service] = ProtectedResourceFetcher(
                profile,
                cookie_store,
                driver_factory,
                http,
                user_agent=config.user_agent,
                headless=config.headless,
            )
            machines[service] = SessionStateMachine(
                profile,
                driver_factory,
                cookie_store,
                silent_timeout=config.silent_refresh_timeout_seconds,
                headless=config.headless,
            )
        return cls(
            config=config,
            db=db,
            http=http,
            cookie_store=cookie_store,
            fetchers=fetchers,
            sessions=SessionManager(cookie_store, machines),
        )

    async def itad_client(self) -> ItadClient:
        api_key = self.config.itad_api_key or await self.db.get_api_key("itad") or ""
        return ItadClient(
            api_key,
            self.http,
            base_url=self.config.itad_base_url,
            region=self.config.itad_region,
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Cross-reference your Steam catalog against subscription services.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    auth = sub.add_parser("auth", help="Sign in to a service interactively")
    auth.add_argument("--service", required=True, choices=_SERVICE_CHOICES)

    refresh = sub.add_parser("refresh", help="Silently revalidate a stored session")
    refresh.add_argument("--service", required=True, choices=_SERVICE_CHOICES)

    sync = sub.add_parser("sync", help="Pull a Steam catalog and resolve subscription coverage")
    group = sync.add_mutually_exclusive_group(required=True)
    group.add_argument("--wishlist", action="store_true", help="Sync the Steam wishlist")
    group.add_argument("--owned", action="store_true", help="Sync owned Steam games")

    sub.add_parser("status", help="Show partner subscription status")
    sub.add_parser("matches", help="List wishlist items playable through your subscriptions")

    config = sub.add_parser("config", help="Store settings")
    config.add_argument("--set-api-key", metavar="SERVICE=KEY", required=True)
    return parser


def _auth_hint(service: Service) -> str:
    return f"Please run '{PROG} auth --service {service.value}'"


def format_item(item: CatalogItem) -> str:
    line = f"- {item.display_name} (AppId: {item.external_app_id}) - Status: "
    if item.covered_by:
        line += "On: " + ", ".join(item.covered_by)
        if item.coverage_unknown:
            line += " (some lookups failed)"
    elif item.coverage_unknown or item.error:
        line += "Coverage unknown."
    else:
        line += "Not on any subscription."
    return line


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def cmd_auth(app: App, service: Service) -> int:
    name = get_profile(service).display_name
    print(f"Opening {name} sign-in. Close the window to cancel.")
    if await app.sessions.login(service):
        print(f"{name} authentication successful. Cookies saved to {app.cookie_store.path_for(service.value)}")
        return 0
    print(f"{name} authentication did not complete. {_auth_hint(service)} to try again.")
    return 1


async def cmd_refresh(app: App, service: Service) -> int:
    name = get_profile(service).display_name
    if not app.cookie_store.exists(service.value):
        print(f"{name} cookies not found. {_auth_hint(service)} first.")
        return 1
    if await app.sessions.refresh(service):
        print(f"{name} session refreshed.")
        return 0
    print(f"{name} session could not be refreshed automatically. {_auth_hint(service)}.")
    return 1


async def cmd_sync(app: App, kind: CatalogKind) -> int:
    if not app.cookie_store.exists(Service.STEAM.value):
        print(f"Steam cookies not found. {_auth_hint(Service.STEAM)} first.")
        return 1
    try:
        itad = await app.itad_client()
    except ApiKeyMissing:
        print(f"IsThereAnyDeal API key not set. Please run '{PROG} config --set-api-key ITAD=<key>' first.")
        return 1

    catalog = SteamCatalog(app.fetchers[Service.STEAM], app.http, app.db)
    ids = await app.sessions.run_with_session(Service.STEAM, lambda: catalog.fetch_catalog(kind))
    if not ids:
        print(f"No {kind.value} items found.")
        await app.db.replace_catalog(kind, [])
        return 0

    print(f"Found {len(ids)} {kind.value} items. Resolving subscription coverage...")
    pipeline = EnrichmentPipeline(
        catalog.resolve_name,
        CatalogMatcher(itad, limit=app.config.itad_search_limit),
        SubscriptionResolver(itad, batch_size=app.config.subs_batch_size),
        concurrency=app.config.enrich_concurrency,
    )
    report = await pipeline.enrich(ids, kind.value)
    await app.db.replace_catalog(kind, report.items)
    for item in report.items:
        print(format_item(item))
    if report.failed:
        print(f"{len(report.failed)} items could not be resolved; see the log for details.")
    return 0


async def cmd_status(app: App) -> int:
    checker = SubscriptionStatusChecker(app.fetchers)
    statuses = await checker.check_all(_PARTNERS)
    for service, status in statuses.items():
        print(f"{get_profile(service).display_name}: {status.label}")
    return 0


async def cmd_matches(app: App) -> int:
    items = await app.db.load_catalog(CatalogKind.WISHLIST)
    if not items:
        print(f"No synced wishlist. Run '{PROG} sync --wishlist' first.")
        return 1
    statuses = await SubscriptionStatusChecker(app.fetchers).check_all(_PARTNERS)
    playable = [item for item in items if user_has_access(item, statuses)]
    if not playable:
        print("None of your wishlist items are included in your active subscriptions.")
        return 0
    print(f"{len(playable)} wishlist items are included in your subscriptions:")
    for item in playable:
        print(format_item(item))
    return 0


async def cmd_config(db: Database, assignment: str) -> int:
    service, sep, key = assignment.partition("=")
    service = service.strip().lower()
    key = key.strip()
    if not sep or not service or not key:
        raise UsageError("Expected --set-api-key SERVICE=KEY, e.g. ITAD=abc123")
    await db.set_api_key(service, key)
    print(f"API key for {service.upper()} saved.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _dispatch(args: argparse.Namespace, config: Config, driver_factory: DriverFactory | None) -> int:
    db = Database(config.db_path)
    await db.init()
    try:
        if args.command == "config":
            return await cmd_config(db, args.set_api_key)

        async with aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar()) as http:
            factory = driver_factory or make_driver_factory(config.user_agent, config.headless)
            app = App.build(config, db, http, factory)
            if args.command == "auth":
                return await cmd_auth(app, Service.parse(args.service))
            if args.command == "refresh":
                return await cmd_refresh(app, Service.parse(args.service))
            if args.command == "sync":
                return await cmd_sync(app, CatalogKind.OWNED if args.owned else CatalogKind.WISHLIST)
            if args.command == "status":
                return await cmd_status(app)
            if args.command == "matches":
                return await cmd_matches(app)
        raise UsageError(f"Unknown command: {args.command}")
    finally:
        await db.close()


async def main(
    argv: Sequence[str] | None = None,
    *,
    config: Config | None = None,
    driver_factory: DriverFactory | None = None,
) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return 0 if exc.code == 0 else 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(message)s",
    )
    try:
        config = config or Config.from_env(args.env_file)
        return await _dispatch(args, config, driver_factory)
    except NeedsLogin as exc:
        print(str(exc))
        return 1
    except ApiKeyMissing:
        print(f"IsThereAnyDeal API key not set. Please run '{PROG} config --set-api-key ITAD=<key>' first.")
        return 1
    except TransientNetworkError as exc:
        print(f"Temporary network problem: {exc}. Check your connection and run the command again.")
        return 1
    except NavigationFailed as exc:
        print(f"Network error: {exc}. Please try again.")
        return 1
    except (UsageError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    except SubscoutError as exc:
        print(f"Error: {exc}")
        return 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
