from __future__ import annotations

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from subscout.errors import ApiKeyMissing, BatchLookupFailed
from subscout.itad import ItadClient, SearchHit, SubEntry


@pytest.fixture
async def itad_api():
    seen: dict[str, object] = {}

    async def search(request: web.Request) -> web.Response:
        seen["search"] = dict(request.query)
        return web.json_response(
            [
                {"id": "018d937f-bf6", "title": "Battlefield 6", "slug": "battlefield-6"},
                {"id": "", "title": "ignored"},
            ]
        )

    async def subs(request: web.Request) -> web.Response:
        seen["subs_query"] = dict(request.query)
        seen["subs_body"] = await request.json()
        if "boom" in seen["subs_body"]:
            return web.Response(status=500, text="internal")
        return web.json_response(
            [
                {"id": "018d937f-bf6", "subs": [{"id": 1, "name": "Game Pass", "leaving": None}]},
                {"id": "other", "subs": [{"id": 2, "name": "EA Play", "leaving": "2026-12-01T00:00:00+00:00"}]},
            ]
        )

    app = web.Application()
    app.router.add_get("/games/search/v1", search)
    app.router.add_post("/games/subs/v1", subs)
    srv = TestServer(app, host="127.0.0.1")
    await srv.start_server()
    srv.seen = seen  # type: ignore[attr-defined]
    yield srv
    await srv.close()


def _client(srv, http) -> ItadClient:
    return ItadClient("secret", http, base_url=str(srv.make_url("/")).rstrip("/"), region="GB")


def test_missing_api_key() -> None:
    with pytest.raises(ApiKeyMissing):
        ItadClient("", http=None)  # type: ignore[arg-type]


async def test_search(itad_api) -> None:
    async with aiohttp.ClientSession() as http:
        hits = await _client(itad_api, http).search("Battlefield 6", limit=5)

    assert hits == [SearchHit(id="018d937f-bf6", title="Battlefield 6")]
    assert itad_api.seen["search"] == {"key": "secret", "title": "Battlefield 6", "limit": "5"}


async def test_subscriptions_posts_id_array(itad_api) -> None:
    async with aiohttp.ClientSession() as http:
        result = await _client(itad_api, http).subscriptions(["018d937f-bf6", "other"])

    assert itad_api.seen["subs_body"] == ["018d937f-bf6", "other"]
    assert itad_api.seen["subs_query"] == {"key": "secret", "country": "GB"}
    assert result[0].subs == [SubEntry("Game Pass", None)]
    assert result[1].subs == [SubEntry("EA Play", "2026-12-01T00:00:00+00:00")]


async def test_server_error_is_batch_failure(itad_api) -> None:
    async with aiohttp.ClientSession() as http:
        with pytest.raises(BatchLookupFailed, match="HTTP 500"):
            await _client(itad_api, http).subscriptions(["boom"])


async def test_connection_error_is_batch_failure() -> None:
    async with aiohttp.ClientSession() as http:
        client = ItadClient("secret", http, base_url="http://127.0.0.1:1", timeout=2)
        with pytest.raises(BatchLookupFailed):
            await client.search("anything")
