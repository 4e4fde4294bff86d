from __future__ import annotations

import json
from pathlib import Path

from subscout.cookies import Cookie, CookieJar
from subscout.storage import CookieStore, FileKeyValueStore


def test_put_get_delete_round_trip(tmp_path: Path) -> None:
    kv = FileKeyValueStore(tmp_path / "kv")

    assert kv.get("missing") is None
    kv.put("names", b'{"10": "Counter-Strike"}')

    assert kv.get("names") == b'{"10": "Counter-Strike"}'
    assert kv.exists("names")
    assert kv.delete("names") is True
    assert kv.delete("names") is False


def test_put_replaces_without_leaving_temp_files(tmp_path: Path) -> None:
    kv = FileKeyValueStore(tmp_path)
    kv.put("steam_cookies", b"[1]")
    kv.put("steam_cookies", b"[2]")

    assert kv.get("steam_cookies") == b"[2]"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["steam_cookies.json"]


def test_keys_are_sanitised_to_filenames(tmp_path: Path) -> None:
    kv = FileKeyValueStore(tmp_path)

    assert kv.path_for("../etc/passwd") == tmp_path / "___etc_passwd.json"


def test_cookie_store_uses_service_file_name(cookie_store: CookieStore, tmp_path: Path) -> None:
    jar = CookieJar([Cookie("steamLoginSecure", "token", "steamcommunity.com")])

    cookie_store.save("steam", jar)

    path = tmp_path / "auth_tokens" / "steam_cookies.json"
    assert cookie_store.path_for("steam") == path
    assert json.loads(path.read_text())[0]["Name"] == "steamLoginSecure"
    assert cookie_store.load("steam") == jar


def test_cookie_store_treats_unreadable_file_as_missing(cookie_store: CookieStore) -> None:
    path = cookie_store.path_for("xbox")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json")

    assert cookie_store.load("xbox") is None


def test_cookie_store_clear(cookie_store: CookieStore) -> None:
    cookie_store.save("ea", CookieJar([Cookie("PLAY_SESSION", "x", "www.ea.com")]))

    cookie_store.clear("ea")

    assert cookie_store.exists("ea") is False
    assert cookie_store.load("ea") is None
