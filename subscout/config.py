from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent
STORAGE_DIR = PROJECT_ROOT / "storage"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from None


@dataclass(frozen=True)
class Config:
    itad_api_key: str = ""
    headless: bool = True
    storage_dir: Path = field(default_factory=lambda: STORAGE_DIR)
    silent_refresh_timeout_seconds: float = 15.0
    enrich_concurrency: int = 5
    subs_batch_size: int = 20
    itad_base_url: str = "https://api.isthereanydeal.com"
    itad_region: str = "GB"
    itad_search_limit: int = 5
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )

    @property
    def auth_tokens_dir(self) -> Path:
        return self.storage_dir / "auth_tokens"

    @property
    def db_path(self) -> Path:
        return self.storage_dir / "subscout.db"

    @classmethod
    def from_env(cls, env_path: Path | str | None = None) -> Config:
        load_dotenv(dotenv_path=env_path or PROJECT_ROOT / ".env")

        storage = os.getenv("SUBSCOUT_STORAGE_DIR", "").strip()
        concurrency = _env_int("ENRICH_CONCURRENCY", 5)
        batch_size = _env_int("SUBS_BATCH_SIZE", 20)
        if concurrency < 1:
            raise ValueError("ENRICH_CONCURRENCY must be >= 1")
        if batch_size < 1:
            raise ValueError("SUBS_BATCH_SIZE must be >= 1")

        return cls(
            itad_api_key=os.getenv("ITAD_API_KEY", "").strip(),
            headless=os.getenv("HEADLESS", "true").lower() == "true",
            storage_dir=Path(storage) if storage else STORAGE_DIR,
            silent_refresh_timeout_seconds=_env_float("SILENT_REFRESH_TIMEOUT_SECONDS", 15.0),
            enrich_concurrency=concurrency,
            subs_batch_size=batch_size,
            itad_base_url=os.getenv("ITAD_BASE_URL", "https://api.isthereanydeal.com").rstrip("/"),
            itad_region=os.getenv("ITAD_REGION", "GB").strip() or "GB",
            itad_search_limit=_env_int("ITAD_SEARCH_LIMIT", 5),
        )
