"""Tests for the REST client."""

import json

import httpx
import pytest

from agentwire.rest import APIError, SessionApiClient


def make_api(fast_settings, handler):
    return SessionApiClient(fast_settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_session_sends_bearer_token(fast_settings):
    """Test conversation creation and the auth header."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200, json={"cid": "c1", "conversation": {"title": "Demo", "messageCount": 0}}
        )

    async with make_api(fast_settings, handler) as api:
        conversation = await api.create_session("Demo")

    assert conversation.cid == "c1"
    assert conversation.title == "Demo"
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/conversations"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content) == {"title": "Demo"}


@pytest.mark.asyncio
async def test_list_sessions_passes_filters(fast_settings):
    """Test paging parameters and the list envelope."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "items": [{"cid": "c1", "status": "running"}],
                "total": 1,
                "page": 1,
                "pageSize": 10,
                "hasMore": False,
            },
        )

    async with make_api(fast_settings, handler) as api:
        page = await api.list_sessions(offset=0, limit=10, status="running")

    assert page.items[0].cid == "c1"
    assert page.page_size == 10
    assert dict(seen[0].url.params) == {"offset": "0", "limit": "10", "status": "running"}


@pytest.mark.asyncio
async def test_get_session_detail(fast_settings):
    """Test fetching a conversation with its history."""

    def handler(request):
        return httpx.Response(
            200,
            json={"cid": "c1", "messages": [{"id": "m1", "role": "user", "content": "hi"}]},
        )

    async with make_api(fast_settings, handler) as api:
        detail = await api.get_session("c1")

    assert detail.messages[0]["content"] == "hi"
    assert detail.files == {}


@pytest.mark.asyncio
async def test_error_status_raises_api_error(fast_settings):
    """Test that an error status carries the server's detail."""

    def handler(request):
        return httpx.Response(404, json={"detail": "Conversation not found"})

    async with make_api(fast_settings, handler) as api:
        with pytest.raises(APIError) as exc_info:
            await api.get_session("missing")

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Conversation not found"


@pytest.mark.asyncio
async def test_network_failure_raises_api_error(fast_settings):
    """Test that transport failures are wrapped."""

    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with make_api(fast_settings, handler) as api:
        with pytest.raises(APIError) as exc_info:
            await api.delete_session("c1")

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_empty_body_is_accepted(fast_settings):
    """Test control endpoints answering with no content."""

    def handler(request):
        return httpx.Response(204)

    async with make_api(fast_settings, handler) as api:
        assert await api.stop("c1") is None
