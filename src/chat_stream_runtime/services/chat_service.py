from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger
from tenacity import retry

from chat_stream_runtime.errors import ChatServiceError
from chat_stream_runtime.models import ServiceMetadata, ThreadList, ThreadSummary
from chat_stream_runtime.services.common import default_retry_kwargs, describe_failure
from chat_stream_runtime.services.metadata_cache import MetadataCache
from chat_stream_runtime.stream.cancellation import CancellationHandle
from chat_stream_runtime.stream.events import DoneEvent, ErrorEvent, StreamEvent, interpret_frame
from chat_stream_runtime.stream.frame_decoder import FrameStream

_DEFAULT_TIMEOUT_SECONDS = 60.0


def build_stream_request(
    message: str,
    *,
    model: str | None = None,
    thread_id: str | None = None,
    user_id: str | None = None,
    stream_tokens: bool = True,
) -> dict[str, Any]:
    body: dict[str, Any] = {"message": message}
    if model:
        body["model"] = model
    if thread_id:
        body["thread_id"] = thread_id
    if user_id:
        body["user_id"] = user_id
    body["stream_tokens"] = stream_tokens
    return body


class ChatService:
    """HTTP client for the chat backend.

    `stream` never raises for transport or HTTP failures; they arrive as a
    single error event. The request/response calls raise `ChatServiceError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        default_agent: str = "",
        default_model: str = "",
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        metadata_cache: MetadataCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not base_url.strip():
            raise ValueError("ChatService requires a base URL")
        self._base_url = base_url.strip().rstrip("/")
        self.default_agent = default_agent
        self.default_model = default_model
        self._metadata_cache = metadata_cache or MetadataCache()
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def metadata_cache(self) -> MetadataCache:
        return self._metadata_cache

    async def aclose(self) -> None:
        await self._client.aclose()

    # Metadata

    def get_cached_metadata(self) -> ServiceMetadata | None:
        return self._metadata_cache.get(self._base_url)

    async def get_metadata(self, force: bool = False) -> ServiceMetadata:
        return await self._metadata_cache.get_or_fetch(
            self._base_url,
            self._fetch_metadata,
            force=force,
        )

    async def _fetch_metadata(self) -> ServiceMetadata:
        logger.debug(f"Fetching service metadata from {self._base_url}/info")
        response = await self._send("GET", "/info")
        if response.is_error:
            raise ChatServiceError(
                describe_failure(response, "Failed to fetch metadata"),
                status_code=response.status_code,
            )
        return ServiceMetadata.from_dict(response.json())

    # Streaming

    async def stream(
        self,
        message: str,
        *,
        handle: CancellationHandle | None = None,
        agent: str | None = None,
        model: str | None = None,
        thread_id: str | None = None,
        user_id: str | None = None,
        stream_tokens: bool = True,
    ) -> AsyncIterator[StreamEvent]:
        """Stream the events of one turn, ending with a done or error event.

        Nothing follows a cancellation: once the handle is cancelled the
        stream stops at the next chunk read without a done event.
        """
        handle = handle or CancellationHandle()
        if handle.cancelled:
            return
        agent = agent or self.default_agent
        if not agent:
            yield ErrorEvent("No agent selected")
            return

        body = build_stream_request(
            message,
            model=model or self.default_model,
            thread_id=thread_id,
            user_id=user_id,
            stream_tokens=stream_tokens,
        )
        logger.debug(
            f"Stream request: agent={agent}, model={body.get('model')}, "
            f"thread={thread_id}, stream_tokens={stream_tokens}"
        )

        try:
            async with self._client.stream(
                "POST",
                f"/{agent}/stream",
                json=body,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.is_error:
                    await response.aread()
                    error = describe_failure(response, "Stream failed")
                    logger.error(error)
                    yield ErrorEvent(error)
                    return

                async for frame in FrameStream(response.aiter_bytes(), handle):
                    event = interpret_frame(frame)
                    if event is None:
                        continue
                    yield event
                    if isinstance(event, DoneEvent):
                        return
        except httpx.HTTPError as ex:
            error = str(ex) or type(ex).__name__
            logger.error(f"Stream transport error: {error}")
            yield ErrorEvent(error)
            return

        if not handle.cancelled:
            logger.debug("Stream ended without a closing sentinel")
            yield DoneEvent()

    # Request/response

    async def send_feedback(self, run_id: str, key: str, score: float) -> Any:
        response = await self._send(
            "POST",
            "/feedback",
            json_body={"run_id": run_id, "key": key, "score": score},
        )
        if response.is_error:
            raise ChatServiceError(
                describe_failure(response, "Failed to send feedback"),
                status_code=response.status_code,
            )
        return response.json()

    async def get_history(self, thread_id: str, user_id: str | None = None) -> list[dict[str, Any]]:
        body: dict[str, Any] = {"thread_id": thread_id}
        uid = (user_id or "").strip()
        if uid:
            body["user_id"] = uid
        response = await self._send("POST", "/history", json_body=body)
        if response.is_error:
            raise ChatServiceError(
                describe_failure(response, "Failed to get history"),
                status_code=response.status_code,
            )
        data = response.json()
        messages = data.get("messages") if isinstance(data, dict) else None
        return [m for m in messages or [] if isinstance(m, dict)]

    async def get_threads(
        self,
        user_id: str | None,
        *,
        limit: int | None = None,
        offset: int | None = None,
        search: str | None = None,
    ) -> ThreadList:
        uid = (user_id or "").strip()
        if not uid:
            return ThreadList()
        body: dict[str, Any] = {"user_id": uid}
        if limit is not None:
            body["limit"] = limit
        if offset is not None:
            body["offset"] = offset
        if search:
            body["search"] = search
        try:
            response = await self._send("POST", "/history/threads", json_body=body)
            if response.is_error:
                raise ChatServiceError(
                    describe_failure(response, "Failed to get threads"),
                    status_code=response.status_code,
                )
            data = response.json()
        except (httpx.HTTPError, ChatServiceError, ValueError) as ex:
            logger.error(f"get_threads failed: {ex}")
            return ThreadList()
        if not isinstance(data, dict):
            return ThreadList()

        threads = tuple(
            ThreadSummary.from_dict(item)
            for item in data.get("threads") or []
            if isinstance(item, dict)
        )
        total = data.get("total")
        return ThreadList(threads=threads, total=int(total) if total is not None else len(threads))

    @retry(**default_retry_kwargs())
    async def _send(self, method: str, path: str, *, json_body: dict | None = None) -> httpx.Response:
        return await self._client.request(method, path, json=json_body)
