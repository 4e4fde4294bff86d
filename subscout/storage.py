from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from subscout.cookies import CookieJar

logger = logging.getLogger(__name__)


class FileKeyValueStore:
    """Byte blobs stored one file per key, replaced atomically on write."""

    def __init__(self, root: Path, suffix: str = ".json") -> None:
        self._root = root
        self._suffix = suffix

    def path_for(self, key: str) -> Path:
        safe_key = re.sub(r"[^0-9A-Za-z_-]", "_", str(key))
        return self._root / f"{safe_key}{self._suffix}"

    def get(self, key: str) -> bytes | None:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def exists(self, key: str) -> bool:
        path = self.path_for(key)
        return path.exists() and path.stat().st_size > 0


class CookieStore:
    """Persists one CookieJar per service as ``<service>_cookies.json``."""

    def __init__(self, kv: FileKeyValueStore) -> None:
        self._kv = kv

    @staticmethod
    def _key(service: str) -> str:
        return f"{service}_cookies"

    def path_for(self, service: str) -> Path:
        return self._kv.path_for(self._key(service))

    def exists(self, service: str) -> bool:
        return self._kv.exists(self._key(service))

    def load(self, service: str) -> CookieJar | None:
        raw = self._kv.get(self._key(service))
        if not raw:
            return None
        try:
            return CookieJar.from_json(raw)
        except ValueError as exc:
            logger.warning("Ignoring unreadable cookie file for %s: %s", service, exc)
            return None

    def save(self, service: str, jar: CookieJar) -> None:
        self._kv.put(self._key(service), jar.to_json())
        logger.info("Saved %d cookies for %s to %s", len(jar), service, self.path_for(service))

    def clear(self, service: str) -> None:
        if self._kv.delete(self._key(service)):
            logger.info("Deleted invalid/expired cookies for %s", service)
