from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

from subscout.models import CatalogItem, CatalogKind

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY COLLATE NOCASE,
    value TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS metadata (
    kind  TEXT NOT NULL,
    key   TEXT NOT NULL,
    value TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (kind, key)
);

CREATE TABLE IF NOT EXISTS catalog_items (
    app_id           INTEGER NOT NULL,
    kind             TEXT NOT NULL,
    display_name     TEXT NOT NULL DEFAULT '',
    external_ids     TEXT NOT NULL DEFAULT '[]',
    coverage         TEXT NOT NULL DEFAULT '{}',
    coverage_unknown INTEGER NOT NULL DEFAULT 0,
    error            TEXT,
    updated_at       TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (app_id, kind)
);
"""


class Database:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        logger.info("Database initialized at %s", self._db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._db

    # ------------------------------------------------------------------
    # Settings (API keys)
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> str | None:
        async with self.db.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row["value"] if row else None

    async def set_setting(self, key: str, value: str) -> None:
        if not key:
            raise ValueError("setting key must not be empty")
        await self.db.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        await self.db.commit()

    async def get_api_key(self, service: str) -> str | None:
        return await self.get_setting(f"api_key:{service}")

    async def set_api_key(self, service: str, api_key: str) -> None:
        if not service or not api_key:
            raise ValueError("service and api key must not be empty")
        await self.set_setting(f"api_key:{service}", api_key)
        logger.info("API key for %r saved", service)

    # ------------------------------------------------------------------
    # Metadata cache (names / descriptions / header art)
    # ------------------------------------------------------------------

    async def get_metadata(self, kind: str, key: str) -> str | None:
        async with self.db.execute(
            "SELECT value FROM metadata WHERE kind = ? AND key = ?", (kind, str(key))
        ) as cursor:
            row = await cursor.fetchone()
        return row["value"] if row else None

    async def set_metadata(self, kind: str, key: str, value: str) -> None:
        await self.db.execute(
            """INSERT INTO metadata (kind, key, value) VALUES (?, ?, ?)
               ON CONFLICT(kind, key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = datetime('now')""",
            (kind, str(key), value),
        )
        await self.db.commit()

    # ------------------------------------------------------------------
    # Enriched catalog
    # ------------------------------------------------------------------

    async def replace_catalog(self, kind: CatalogKind, items: list[CatalogItem]) -> None:
        await self.db.execute("DELETE FROM catalog_items WHERE kind = ?", (kind.value,))
        await self.db.executemany(
            """INSERT INTO catalog_items
                   (app_id, kind, display_name, external_ids, coverage, coverage_unknown, error)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    item.external_app_id,
                    kind.value,
                    item.display_name,
                    json.dumps(item.resolved_external_ids),
                    json.dumps(item.coverage, ensure_ascii=False),
                    int(item.coverage_unknown),
                    item.error,
                )
                for item in items
            ],
        )
        await self.db.commit()
        logger.info("Stored %d %s items", len(items), kind.value)

    async def load_catalog(self, kind: CatalogKind) -> list[CatalogItem]:
        async with self.db.execute(
            "SELECT * FROM catalog_items WHERE kind = ? ORDER BY display_name COLLATE NOCASE",
            (kind.value,),
        ) as cursor:
            rows = await cursor.fetchall()
        items: list[CatalogItem] = []
        for row in rows:
            items.append(
                CatalogItem(
                    external_app_id=int(row["app_id"]),
                    display_name=row["display_name"],
                    resolved_external_ids=list(json.loads(row["external_ids"] or "[]")),
                    coverage={str(k): bool(v) for k, v in json.loads(row["coverage"] or "{}").items()},
                    coverage_unknown=bool(row["coverage_unknown"]),
                    error=row["error"],
                )
            )
        return items
