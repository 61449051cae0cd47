"""REST client for conversation CRUD and the HTTP control fallbacks."""

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from .auth import bearer_header
from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class APIError(Exception):
    """API request failed with structured error info."""

    def __init__(self, message: str, status_code: int | None = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or message


# ============================================================================
# Response models
# ============================================================================


class Conversation(BaseModel):
    """Conversation summary as listed by the API."""

    cid: str
    title: str = ""
    status: str = "idle"
    message_count: int = Field(default=0, alias="messageCount")
    last_message: str | None = Field(default=None, alias="lastMessage")
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}


class ConversationList(BaseModel):
    """One page of conversations."""

    items: list[Conversation] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = Field(default=20, alias="pageSize")
    has_more: bool = Field(default=False, alias="hasMore")

    model_config = {"populate_by_name": True}


class ConversationDetail(Conversation):
    """A conversation with its full history."""

    messages: list[dict[str, Any]] = Field(default_factory=list)
    todos: Any = None
    files: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Client
# ============================================================================


class SessionApiClient:
    """Async HTTP client for the conversation endpoints."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or default_settings
        token = token if token is not None else self.settings.auth_token
        self._client = httpx.AsyncClient(
            base_url=self.settings.api_url.rstrip("/"),
            headers=bearer_header(token),
            timeout=self.settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SessionApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Make an HTTP request and decode the JSON body.

        Raises:
            APIError: If the request fails or returns an error status
        """
        try:
            resp = await self._client.request(method, url, json=json_body, params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            try:
                body = e.response.json()
                detail = body.get("detail") if isinstance(body, dict) else body
            except (json.JSONDecodeError, ValueError):
                detail = e.response.text
            raise APIError(
                f"API request failed: {status_code} {detail or e.response.text}",
                status_code=status_code,
                detail=detail,
            ) from e
        except httpx.TimeoutException as e:
            raise APIError(f"API request timed out: {method} {url}") from e
        except httpx.HTTPError as e:
            raise APIError(f"API request failed: {e}") from e

        logger.debug(f"{method} {url} -> {resp.status_code}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise APIError(f"Invalid JSON in response from {url}", status_code=resp.status_code) from e

    # =========================================================================
    # Conversations
    # =========================================================================

    async def create_session(self, title: str | None = None) -> Conversation:
        """Create a conversation and return its summary."""
        data = await self._request("POST", "/conversations", json_body={"title": title}) or {}
        payload = data.get("conversation") or {}
        return Conversation.model_validate({**payload, "cid": data.get("cid") or payload.get("cid")})

    async def get_session(self, session_id: str) -> ConversationDetail:
        """Fetch a conversation with messages, todos and files."""
        data = await self._request("GET", f"/conversations/{session_id}")
        return ConversationDetail.model_validate(data)

    async def list_sessions(
        self, offset: int | None = None, limit: int | None = None, status: str | None = None
    ) -> ConversationList:
        """List conversations, newest first."""
        params = {
            key: value
            for key, value in (("offset", offset), ("limit", limit), ("status", status))
            if value is not None
        }
        data = await self._request("GET", "/conversations", params=params or None)
        return ConversationList.model_validate(data)

    async def delete_session(self, session_id: str) -> None:
        """Delete a conversation."""
        await self._request("DELETE", f"/conversations/{session_id}")

    # =========================================================================
    # Control fallbacks
    # =========================================================================

    async def stop(self, session_id: str) -> None:
        """Stop the running turn over HTTP."""
        await self._request("POST", f"/chat/{session_id}/stop")

    async def resume_interrupt(self, session_id: str, interrupt_id: str, decision: Any) -> None:
        """Answer an interrupt over HTTP."""
        await self._request(
            "POST",
            f"/chat/{session_id}/interrupt/resume",
            json_body={"interruptId": interrupt_id, "decision": decision},
        )
