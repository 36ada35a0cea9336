from base64 import b64encode

import pytest
from unittest.mock import AsyncMock, MagicMock

from place_resolver.clients import FetchResponse
from place_resolver.clients import web_client as web_client_module


@pytest.fixture
def fresh_client():
    # Reset singleton state
    web_client_module.WebClient._instance = None
    web_client_module.WebClient._initialized = False
    client = web_client_module.WebClient()
    yield client
    web_client_module.WebClient._instance = None
    web_client_module.WebClient._initialized = False


def _response_cm(payload: dict) -> MagicMock:
    resp = MagicMock()
    resp.json = AsyncMock(return_value=payload)
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=resp)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


def test_web_client_is_singleton(fresh_client):
    assert web_client_module.WebClient() is fresh_client


def test_fetch_response_json():
    assert FetchResponse(status=200, url="u", text='{"a": 1}').json() == {"a": 1}


@pytest.mark.asyncio
async def test_proxy_get_decodes_target_response(fresh_client):
    body = b64encode('<a href="/place/1234567">'.encode("utf-8")).decode()
    session = MagicMock()
    session.post = MagicMock(return_value=_response_cm({
        "url": "https://m.place.naver.com/place/1234567/home",
        "statusCode": 404,
        "httpResponseBody": body,
    }))
    fresh_client.api_key = "test-key"

    resp = await fresh_client._get_via_proxy(session, "https://m.place.naver.com/place/1234567/home", {"User-Agent": "ua"})

    assert resp.status == 404
    assert resp.text == '<a href="/place/1234567">'
    payload = session.post.call_args.kwargs["json"]
    assert payload["httpRequestMethod"] == "GET"
    assert payload["customHttpRequestHeaders"] == [{"name": "User-Agent", "value": "ua"}]


@pytest.mark.asyncio
async def test_proxy_get_raises_on_zyte_error(fresh_client):
    session = MagicMock()
    session.post = MagicMock(return_value=_response_cm({
        "status": 520, "title": "Website Ban", "detail": "banned", "type": "/download/temporary-error",
    }))
    fresh_client.api_key = "test-key"

    with pytest.raises(Exception, match="Website Ban"):
        await fresh_client._get_via_proxy(session, "https://search.naver.com/search.naver", None)


def test_uses_proxy_follows_api_key(fresh_client):
    fresh_client.api_key = None
    assert not fresh_client.uses_proxy
    fresh_client.api_key = "key"
    assert fresh_client.uses_proxy
