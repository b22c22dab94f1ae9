from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
from loguru import logger

from chat_stream_runtime.assembler import MessageAssembler, Turn
from chat_stream_runtime.errors import ChatRuntimeError, ChatServiceError, SessionBusyError
from chat_stream_runtime.history import history_to_messages
from chat_stream_runtime.models import Message, ServiceMetadata, SessionSnapshot, ThreadList
from chat_stream_runtime.persistence.store import SnapshotStore, thread_messages_key
from chat_stream_runtime.services.chat_service import ChatService
from chat_stream_runtime.stream.cancellation import CancellationHandle
from chat_stream_runtime.stream.events import ErrorEvent, StreamEvent, interpret_frame

FEEDBACK_KEY = "human-feedback"


class SessionController:
    """Owns one conversation and its single in-flight turn.

    `start` opens a turn and returns the lazy stream of its events; each event
    has already been applied to the session when the caller sees it. Only one
    turn may be open at a time. Readers take `snapshot()` copies and never
    mutate the live message list.
    """

    def __init__(
        self,
        service: ChatService,
        *,
        agent: str | None = None,
        model: str | None = None,
        thread_id: str | None = None,
        user_id: str | None = None,
        stream_tokens: bool = True,
        starter_message: str | None = None,
        starter_suggestions: list[str] | None = None,
        store: SnapshotStore | None = None,
        storage_key: str | None = None,
        on_stream_end: Callable[[str], None] | None = None,
    ):
        self._service = service
        self._agent = agent
        self._model = model
        self._thread_id = thread_id
        self._user_id = user_id
        self._stream_tokens = stream_tokens
        self._starter_message = starter_message
        self._starter_suggestions = list(starter_suggestions or [])
        self._store = store
        self._storage_key = storage_key or ""
        self._on_stream_end = on_stream_end
        self._assembler = MessageAssembler()
        self._messages: list[Message] = self._initial_messages()
        self._turn: Turn | None = None
        self._handle: CancellationHandle | None = None
        self._follow_up_prompts: list[str] = list(self._starter_suggestions)
        self._metadata: ServiceMetadata | None = service.get_cached_metadata()
        self._error: str | None = None

    async def __aenter__(self) -> SessionController:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # State

    @property
    def is_generating(self) -> bool:
        return self._turn is not None and not self._turn.closed

    @property
    def current_thread_id(self) -> str | None:
        return self._thread_id

    @property
    def current_assistant_message_id(self) -> str | None:
        if self.is_generating:
            return self._turn.assistant_message.id
        return None

    @property
    def pending_follow_ups(self) -> list[str]:
        if self._turn is None:
            return []
        return list(self._turn.pending_follow_ups)

    @property
    def follow_up_prompts(self) -> list[str]:
        return list(self._follow_up_prompts)

    @property
    def metadata(self) -> ServiceMetadata | None:
        return self._metadata

    @property
    def error(self) -> str | None:
        return self._error

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            messages=tuple(m.copy() for m in self._messages),
            is_generating=self.is_generating,
            current_assistant_message_id=self.current_assistant_message_id,
            current_thread_id=self._thread_id,
            follow_up_prompts=tuple(self._follow_up_prompts),
            metadata=self._metadata,
            error=self._error,
        )

    # Turns

    def start(self, user_text: str) -> AsyncIterator[StreamEvent]:
        """Open a turn for `user_text` and return the stream of its events.

        Raises `SessionBusyError` while another turn is open. The user and
        assistant messages are appended before this returns; nothing is sent
        until the returned iterator is consumed.
        """
        if self.is_generating:
            raise SessionBusyError("A turn is already in progress")
        agent = self._resolve_agent()
        if not agent:
            raise ChatRuntimeError("No agent configured and no default agent in service metadata")

        if self._handle is not None:
            self._handle.release()
        handle = CancellationHandle()
        turn = Turn(Message("user", user_text), Message("assistant"), handle)
        self._messages.extend([turn.user_message, turn.assistant_message])
        self._turn = turn
        self._handle = handle
        self._follow_up_prompts = []
        self._error = None
        logger.info(f"Turn started: agent={agent}, thread={self._thread_id}, message={turn.assistant_message.id}")
        return self._run_turn(turn, agent, self._resolve_model())

    async def send_message(self, user_text: str) -> Message | None:
        """Run a whole turn; returns the assistant message, or None when busy."""
        try:
            events = self.start(user_text)
        except SessionBusyError:
            logger.warning("Ignoring send while a turn is in progress")
            return None
        turn = self._turn
        async for _ in events:
            pass
        return turn.assistant_message.copy()

    def cancel(self) -> None:
        """Stop the open turn; a no-op when no turn is open."""
        turn = self._turn
        if turn is None or turn.closed:
            return
        self._cancel_turn(turn)

    def _cancel_turn(self, turn: Turn) -> None:
        turn.handle.cancel()
        for frame in turn.handle.take_buffered_frames():
            event = interpret_frame(frame)
            if event is not None:
                self._apply(turn, event)
        self._assembler.cancel(turn)
        logger.info(f"Turn cancelled: message={turn.assistant_message.id}")
        self._finish(turn)

    async def _run_turn(self, turn: Turn, agent: str, model: str | None) -> AsyncIterator[StreamEvent]:
        if turn.closed:
            self._finish(turn)
            return
        stream = self._service.stream(
            turn.user_message.content,
            handle=turn.handle,
            agent=agent,
            model=model,
            thread_id=self._thread_id,
            user_id=self._user_id,
            stream_tokens=self._stream_tokens,
        )
        try:
            async for event in stream:
                if turn.closed:
                    break
                self._apply(turn, event)
                yield event
        except (asyncio.CancelledError, GeneratorExit):
            if not turn.closed:
                logger.info(f"Turn abandoned by its consumer: message={turn.assistant_message.id}")
                self._cancel_turn(turn)
            raise
        except Exception as ex:
            logger.exception(f"Turn failed: {ex}")
            failure = ErrorEvent(str(ex) or type(ex).__name__)
            self._apply(turn, failure)
            yield failure
        finally:
            await stream.aclose()
            self._finish(turn)

    def _apply(self, turn: Turn, event: StreamEvent) -> None:
        self._assembler.apply(turn, event)
        if turn is not self._turn:
            return
        if turn.follow_up_prompts:
            self._follow_up_prompts = list(turn.follow_up_prompts)
        if turn.error is not None:
            self._error = turn.error

    def _finish(self, turn: Turn) -> None:
        if turn.finalized:
            return
        turn.finalized = True
        self._assembler.close(turn)
        if self._handle is turn.handle:
            self._handle = None
        self.save()
        if self._on_stream_end is not None:
            self._on_stream_end(turn.assistant_message.content)

    # Backend pass-throughs

    async def load_metadata(self, force: bool = False) -> ServiceMetadata | None:
        try:
            self._metadata = await self._service.get_metadata(force=force)
        except (ChatServiceError, httpx.HTTPError, ValueError) as ex:
            logger.error(f"Failed to load service metadata: {ex}")
            self._error = str(ex) or "Failed to fetch metadata"
            return None
        return self._metadata

    async def send_feedback(self, run_id: str, key: str, score: float) -> Any:
        return await self._service.send_feedback(run_id, key, score)

    async def rate_response(self, message_id: str, positive: bool) -> bool:
        message = next((m for m in self._messages if m.id == message_id), None)
        run_id = message.run_id if message is not None else None
        if not run_id:
            logger.debug(f"No run id for message {message_id}; feedback not sent")
            return False
        await self.send_feedback(run_id, FEEDBACK_KEY, 1 if positive else 0)
        return True

    async def get_history(self, thread_id: str) -> list[dict[str, Any]]:
        return await self._service.get_history(thread_id, self._user_id)

    async def get_threads(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
        search: str | None = None,
    ) -> ThreadList:
        return await self._service.get_threads(self._user_id, limit=limit, offset=offset, search=search)

    async def load_thread(self, thread_id: str) -> list[Message]:
        if self.is_generating:
            raise SessionBusyError("Cannot load a thread while a turn is in progress")
        records = await self.get_history(thread_id)
        self._messages = history_to_messages(records)
        self._turn = None
        self._follow_up_prompts = []
        self.set_thread_id(thread_id)
        logger.info(f"Loaded thread {thread_id}: {len(self._messages)} message(s)")
        return [m.copy() for m in self._messages]

    # Conversation management

    def set_thread_id(self, thread_id: str | None) -> None:
        self._thread_id = thread_id
        if self._store is not None:
            self._store.save_current_thread_id(self._storage_key, thread_id)

    def set_model(self, model: str | None) -> None:
        self._model = model

    def set_agent(self, agent: str) -> None:
        """Switch agents; the new agent starts a fresh conversation."""
        if agent == self._agent:
            return
        previous, self._agent = self._agent, agent
        logger.info(f"Agent switched from {previous} to {agent}")
        self.set_thread_id(None)
        self.clear_chat(keep_starter=True)

    def clear_chat(self, *, keep_starter: bool = False) -> None:
        self.cancel()
        if self._store is not None:
            self._store.clear_messages(self._snapshot_key())
        self._messages = self._initial_messages() if keep_starter else []
        self._turn = None
        self._follow_up_prompts = list(self._starter_suggestions) if keep_starter else []
        self._error = None

    def save(self) -> None:
        if self._store is None:
            return
        if self._thread_id:
            self._store.save_current_thread_id(self._storage_key, self._thread_id)
        self._store.save_messages(self._snapshot_key(), self._messages)

    def restore(self) -> bool:
        """Load the stored thread id and messages; returns True when messages were restored."""
        if self._store is None or self.is_generating:
            return False
        if self._thread_id is None:
            self._thread_id = self._store.load_current_thread_id(self._storage_key)
        messages = self._store.load_messages(self._snapshot_key())
        if not messages:
            return False
        self._messages = messages
        logger.info(f"Restored {len(messages)} message(s) for {self._snapshot_key()!r}")
        return True

    async def close(self) -> None:
        self.cancel()
        if self._handle is not None:
            self._handle.release()
            self._handle = None
        await self._service.aclose()

    def _snapshot_key(self) -> str:
        if self._thread_id:
            return thread_messages_key(self._storage_key, self._thread_id)
        return self._storage_key

    def _initial_messages(self) -> list[Message]:
        if not self._starter_message:
            return []
        return [Message("assistant", self._starter_message)]

    def _resolve_agent(self) -> str | None:
        if self._agent:
            return self._agent
        if self._metadata is not None and self._metadata.default_agent:
            return self._metadata.default_agent
        return self._service.default_agent or None

    def _resolve_model(self) -> str | None:
        if self._model:
            return self._model
        if self._metadata is not None and self._metadata.default_model:
            return self._metadata.default_model
        return self._service.default_model or None
