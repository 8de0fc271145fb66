"""Tavus conversational video API client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from src.errors import ConcurrencyLimitError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

SERVICE = "tavus"

_CONCURRENCY_LIMIT_MARKER = "maximum concurrent"


@dataclass(frozen=True)
class PersonaParams:
    replica_id: str
    persona_name: str
    system_prompt: str
    context: str = ""
    default_greeting: str = ""
    enable_vision: bool = True

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "persona_name": self.persona_name,
            "pipeline_mode": "full",
            "system_prompt": self.system_prompt,
            "default_replica_id": self.replica_id,
            "layers": {
                "perception": {"perception_model": "raven-0" if self.enable_vision else "off"},
            },
        }
        if self.context:
            payload["context"] = self.context
        if self.default_greeting:
            payload["default_greeting"] = self.default_greeting
        return payload


@dataclass(frozen=True)
class ConversationParams:
    replica_id: str
    persona_id: str | None = None
    conversation_name: str | None = None
    conversational_context: str | None = None
    custom_greeting: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"replica_id": self.replica_id}
        for key in ("persona_id", "conversation_name", "conversational_context", "custom_greeting"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        return payload


@dataclass(frozen=True)
class Conversation:
    conversation_id: str
    conversation_url: str
    status: str = ""


class AvatarClient(Protocol):
    """Protocol for conversational avatar clients."""

    async def create_persona(self, params: PersonaParams) -> str: ...

    async def create_conversation(self, params: ConversationParams) -> Conversation: ...

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]: ...

    async def end_conversation(self, conversation_id: str) -> None: ...

    async def list_personas(self) -> list[dict[str, Any]]: ...

    async def list_replicas(self) -> list[dict[str, Any]]: ...


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)
    return str(data)


def _unwrap_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("data", [])
    return list(data or [])


class TavusClient:
    """Async wrapper around the Tavus v2 REST API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://tavusapi.com",
        timeout: float = 30.0,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        logger.debug("tavus request", extra={"method": method, "path": path})
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.TimeoutException as exc:
            logger.warning(
                "tavus request timed out",
                extra={"method": method, "path": path, "timeout": self._timeout},
            )
            raise UpstreamTimeoutError(SERVICE, self._timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "tavus request failed", extra={"method": method, "path": path}, exc_info=True
            )
            raise UpstreamError(SERVICE, str(exc) or type(exc).__name__) from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "tavus error response",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "error": message[:500],
                },
            )
            if _CONCURRENCY_LIMIT_MARKER in message.lower():
                raise ConcurrencyLimitError(SERVICE, response.status_code)
            raise UpstreamError(SERVICE, message, response.status_code)

        if not response.content:
            return {}
        return response.json()

    async def create_persona(self, params: PersonaParams) -> str:
        data = await self._request("POST", "/v2/personas", params.to_payload())
        persona_id = data.get("persona_id") if isinstance(data, dict) else None
        if not persona_id:
            raise UpstreamError(SERVICE, "persona response did not include a persona_id")
        logger.info(
            "persona created",
            extra={"persona_id": persona_id, "persona_name": params.persona_name},
        )
        return persona_id

    async def create_conversation(self, params: ConversationParams) -> Conversation:
        data = await self._request("POST", "/v2/conversations", params.to_payload())
        if not isinstance(data, dict) or not data.get("conversation_url"):
            raise UpstreamError(SERVICE, "conversation response did not include a conversation_url")
        conversation = Conversation(
            conversation_id=data.get("conversation_id", ""),
            conversation_url=data["conversation_url"],
            status=data.get("status", ""),
        )
        logger.info(
            "conversation created",
            extra={
                "conversation_id": conversation.conversation_id,
                "persona_id": params.persona_id,
            },
        )
        return conversation

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/v2/conversations/{conversation_id}")

    async def end_conversation(self, conversation_id: str) -> None:
        await self._request("POST", f"/v2/conversations/{conversation_id}/end")

    async def list_personas(self) -> list[dict[str, Any]]:
        return _unwrap_list(await self._request("GET", "/v2/personas"))

    async def list_replicas(self) -> list[dict[str, Any]]:
        return _unwrap_list(await self._request("GET", "/v2/replicas"))
