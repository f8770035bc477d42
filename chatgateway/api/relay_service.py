"""
relay_service.py

This module contains the Stream Relay: it persists the caller's message, streams the
model's reply back fragment by fragment and persists the completed reply.

A turn moves through these states:

    RECEIVED_USER_INPUT -> PERSISTED_USER_MESSAGE -> STREAMING_FROM_PROVIDER
        -> PERSISTING_ASSISTANT_MESSAGE -> COMPLETED

with ERROR_TERMINATED reachable from the last two working states. The user's
message is committed before the provider is contacted, and an assistant message is
only written for a reply that was received in full.
"""

import asyncio
import logging
import weakref
from enum import Enum
from typing import AsyncGenerator, Awaitable, Callable, List, Optional

from autogen_core import CancellationToken
from sqlalchemy.engine import Engine
from sqlmodel import Session

from chatgateway.api.api_models import Principal
from chatgateway.api.conversation_store import ConversationStore
from chatgateway.api.errors import GatewayError, NotFound, PersistenceError
from chatgateway.api.streamer import StreamEvent
from chatgateway.api.transcript import TranscriptBuilder, TranscriptTurn


logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class RelayState(str, Enum):
    RECEIVED_USER_INPUT = "received_user_input"
    PERSISTED_USER_MESSAGE = "persisted_user_message"
    STREAMING_FROM_PROVIDER = "streaming_from_provider"
    PERSISTING_ASSISTANT_MESSAGE = "persisting_assistant_message"
    COMPLETED = "completed"
    ERROR_TERMINATED = "error_terminated"


class ThreadLockRegistry:
    """Hands out one asyncio.Lock per thread id.

    Locks are only weakly held, so a thread nobody is sending to costs nothing.
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def get(self, chat_id: int) -> asyncio.Lock:
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        return lock


def describe_provider_failure(error: Exception):
    """Map a provider exception to a caller-safe (message, code) pair."""
    if isinstance(error, GatewayError):
        return error.detail, error.code
    text = str(error).lower()
    if "quota" in text or "billing" in text or "429" in text:
        return "The model provider rejected the request (quota or billing)", "billing_required"
    return "Failed to generate response", "provider_error"


class RelayTurn:
    """One send-message turn whose user message is already persisted.

    The turn owns the thread's lock until release() is called; events() calls it on
    every exit path, and the route also schedules it after the response so that a
    body that is never iterated cannot keep the thread locked.
    """

    def __init__(
        self,
        relay: "StreamRelay",
        chat_id: int,
        principal: Principal,
        content: str,
        history: List[TranscriptTurn],
        user_message_id: int,
        lock: asyncio.Lock,
    ):
        self.relay = relay
        self.chat_id = chat_id
        self.principal = principal
        self.content = content
        self.history = history
        self.user_message_id = user_message_id
        self.state = RelayState.PERSISTED_USER_MESSAGE
        self._lock = lock
        self._released = False

    def _transition(self, state: RelayState) -> None:
        logger.debug(f"Chat {self.chat_id}: {self.state.value} -> {state.value}")
        self.state = state

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._lock.release()

    async def close(self) -> None:
        """release() for response background tasks, which run sync callables off the event loop."""
        self.release()

    def _abort(self, cancellation_token: CancellationToken, reason: str) -> None:
        cancellation_token.cancel()
        self._transition(RelayState.ERROR_TERMINATED)
        logger.warning(f"Chat {self.chat_id}: {reason}; reply discarded")

    async def events(self, is_disconnected: Optional[DisconnectCheck] = None) -> AsyncGenerator[StreamEvent, None]:
        """Stream the reply as events, ending with exactly one done or error event.

        Args:
            is_disconnected: Optional check of the caller's connection, awaited per fragment.
                A disconnected caller ends the turn without a terminal event and without
                persisting the partial reply.

        Yields:
            StreamEvent: Content fragments in provider order, then done or error.
        """
        if self.state != RelayState.PERSISTED_USER_MESSAGE:
            raise RuntimeError("A relay turn can only be streamed once")

        cancellation_token = CancellationToken()
        fragments = []
        self._transition(RelayState.STREAMING_FROM_PROVIDER)
        stream = self.relay.chat_provider.stream_reply(
            self.history, self.content, cancellation_token=cancellation_token
        )

        try:
            try:
                async for fragment in stream:
                    if is_disconnected is not None and await is_disconnected():
                        self._abort(cancellation_token, "client disconnected")
                        return
                    fragments.append(fragment)
                    yield StreamEvent.chunk(fragment)
            except (asyncio.CancelledError, GeneratorExit):
                self._abort(cancellation_token, "stream cancelled")
                raise
            except Exception as e:
                logger.error(
                    f"Chat {self.chat_id}: provider failed after {len(fragments)} fragments: {str(e)}",
                    exc_info=True,
                )
                self._transition(RelayState.ERROR_TERMINATED)
                message, code = describe_provider_failure(e)
                yield StreamEvent.failure(message, code)
                return

            if not fragments:
                logger.error(f"Chat {self.chat_id}: provider returned an empty reply")
                self._transition(RelayState.ERROR_TERMINATED)
                yield StreamEvent.failure("The model returned an empty response", "provider_error")
                return

            self._transition(RelayState.PERSISTING_ASSISTANT_MESSAGE)
            reply = "".join(fragments)
            try:
                self.relay.persist_reply(self.chat_id, self.principal, reply)
            except (NotFound, PersistenceError) as e:
                # The caller saw the reply but history does not have it; do not claim success.
                logger.error(f"Chat {self.chat_id}: reply streamed but not saved: {e.detail}")
                self._transition(RelayState.ERROR_TERMINATED)
                yield StreamEvent.failure("The response could not be saved", e.code)
                return

            self._transition(RelayState.COMPLETED)
            logger.info(f"Chat {self.chat_id}: reply saved ({len(reply)} characters)")
            yield StreamEvent.completed()
        finally:
            await stream.aclose()
            self.release()


class StreamRelay:
    """Drives one conversational turn against the generation provider.

    Attributes:
        engine (Engine): Engine of the conversation store.
        chat_provider: Object exposing stream_reply(history, message, cancellation_token).
        thread_locks (ThreadLockRegistry): Serializes turns on the same thread.
    """

    def __init__(self, engine: Engine, chat_provider, thread_locks: ThreadLockRegistry):
        self.engine = engine
        self.chat_provider = chat_provider
        self.thread_locks = thread_locks

    async def begin(self, chat_id: int, principal: Principal, content: str) -> RelayTurn:
        """Take the thread's lock, check ownership and persist the user's message.

        Args:
            chat_id (int): Target thread.
            principal (Principal): The caller.
            content (str): The user's message.

        Returns:
            RelayTurn: A turn ready to stream, holding the thread's lock.

        Raises:
            NotFound: If the thread is missing or owned by someone else. Nothing is written.
            PersistenceError: If the user's message cannot be written. The provider is not called.
        """
        lock = self.thread_locks.get(chat_id)
        await lock.acquire()
        try:
            with Session(self.engine) as db:
                store = ConversationStore(db)
                chat = store.get_owned_chat(chat_id, principal.id)
                if chat is None:
                    raise NotFound("Chat not found")

                user_message = store.add_message(chat.id, "user", content)
                logger.info(f"Chat {chat.id}: user message {user_message.id} saved")

                # Racy without the thread lock; with it, exactly one turn sees a count of 1.
                if store.count_messages(chat.id) == 1:
                    try:
                        store.set_title_from(chat, content)
                    except PersistenceError:
                        logger.warning(f"Chat {chat.id}: could not set title from first message")

                history = TranscriptBuilder(store).build_history(
                    chat.id, principal, before_message_id=user_message.id
                )
        except BaseException:
            lock.release()
            raise

        return RelayTurn(self, chat_id, principal, content, history, user_message.id, lock)

    def persist_reply(self, chat_id: int, principal: Principal, reply: str) -> None:
        """Append the completed reply and bump the thread's updated_at.

        Raises:
            NotFound: If the thread was deleted while the reply streamed. Nothing is written.
            PersistenceError: If the reply cannot be written.
        """
        with Session(self.engine) as db:
            store = ConversationStore(db)
            chat = store.get_owned_chat(chat_id, principal.id)
            if chat is None:
                raise NotFound("Chat not found")
            store.add_message(chat.id, "assistant", reply)
            try:
                store.touch(chat)
            except PersistenceError:
                logger.warning(f"Chat {chat_id}: reply saved but updated_at not bumped")

    async def send_message(
        self,
        chat_id: int,
        principal: Principal,
        content: str,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Run a whole turn as one lazy, non-restartable event sequence."""
        turn = await self.begin(chat_id, principal, content)
        events = turn.events(is_disconnected)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()
            turn.release()
