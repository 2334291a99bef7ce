"""Context stores: session state, ring buffers and message history per session."""

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import redis

from ..logging_utils import log_error
from ..models import ConversationContext, Message, SessionState

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 1000
DEFAULT_MAX_MESSAGES = 500


class ContextStoreError(Exception):
    """Raised when the backing store cannot be reached."""


class ContextStore(Protocol):
    """Protocol for conversation context stores.

    Messages are kept newest first, like the recent-intent ring buffers.
    """

    async def get_context(self, session_id: str) -> ConversationContext | None: ...

    async def create_session(
        self, session_id: str | None = None, user_id: str | None = None
    ) -> SessionState: ...

    async def add_message(self, session_id: str, message: Message) -> Message: ...

    async def update_context(self, session_id: str, **changes: Any) -> ConversationContext: ...

    async def get_messages(self, session_id: str, limit: int | None = None) -> list[Message]: ...

    async def clear_history(self, session_id: str) -> None: ...


def _apply_changes(context: ConversationContext, changes: dict[str, Any]) -> ConversationContext:
    updated = context.model_copy(update=changes)
    updated.session.last_activity_at = datetime.now(UTC)
    return updated


class InMemoryContextStore:
    """Process-local context store.

    Sessions beyond max_sessions evict the least recently used one.
    """

    def __init__(
        self,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        max_messages: int = DEFAULT_MAX_MESSAGES,
    ) -> None:
        self.max_sessions = max_sessions
        self.max_messages = max_messages
        self._contexts: OrderedDict[str, ConversationContext] = OrderedDict()
        self._messages: dict[str, list[Message]] = {}

    async def get_context(self, session_id: str) -> ConversationContext | None:
        context = self._contexts.get(session_id)
        if context is None:
            return None
        self._contexts.move_to_end(session_id)
        return context.model_copy(deep=True)

    async def create_session(
        self, session_id: str | None = None, user_id: str | None = None
    ) -> SessionState:
        session = SessionState(session_id=session_id or str(uuid.uuid4()), user_id=user_id)

        while len(self._contexts) >= self.max_sessions:
            evicted, _ = self._contexts.popitem(last=False)
            self._messages.pop(evicted, None)
            logger.info("Evicted least recently used session %s", evicted[:8])

        self._contexts[session.session_id] = ConversationContext(session=session)
        self._messages[session.session_id] = []
        logger.debug("Created session %s", session.session_id[:8])
        return session.model_copy(deep=True)

    async def add_message(self, session_id: str, message: Message) -> Message:
        messages = self._messages.setdefault(session_id, [])
        messages.insert(0, message)
        del messages[self.max_messages :]
        return message

    async def update_context(self, session_id: str, **changes: Any) -> ConversationContext:
        context = self._contexts.get(session_id)
        if context is None:
            raise KeyError(f"Session not found: {session_id}")
        updated = _apply_changes(context, changes)
        self._contexts[session_id] = updated
        return updated.model_copy(deep=True)

    async def get_messages(self, session_id: str, limit: int | None = None) -> list[Message]:
        messages = self._messages.get(session_id, [])
        return list(messages[:limit] if limit else messages)

    async def clear_history(self, session_id: str) -> None:
        self._messages[session_id] = []
        context = self._contexts.get(session_id)
        if context is not None:
            self._contexts[session_id] = context.model_copy(
                update={"recent_intents": [], "recent_entities": [], "recent_commands": []}
            )

    def purge_inactive(self, max_idle_seconds: float) -> int:
        """Drop sessions idle for longer than max_idle_seconds.

        Returns:
            Number of sessions removed
        """
        cutoff = datetime.now(UTC) - timedelta(seconds=max_idle_seconds)
        stale = [
            sid for sid, ctx in self._contexts.items() if ctx.session.last_activity_at < cutoff
        ]
        for session_id in stale:
            del self._contexts[session_id]
            self._messages.pop(session_id, None)
        if stale:
            logger.info("Purged %d inactive sessions", len(stale))
        return len(stale)


class RedisContextStore:
    """Redis-backed context store with persistence.

    This implementation provides:
    - Context and history that survive process restarts
    - Automatic expiration of idle sessions via Redis TTL
    - Fallback to in-memory if Redis unavailable

    Redis calls are blocking and run in worker threads.
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        ttl_seconds: int = 24 * 3600,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        key_prefix: str = "threatguard:",
    ) -> None:
        """Initialize the Redis-backed context store.

        Args:
            redis_client: Redis client instance (None to use in-memory fallback)
            ttl_seconds: Idle time before a session's keys expire (default: 24 hours)
            max_messages: Messages kept per session
            key_prefix: Prefix for Redis keys (default: "threatguard:")
        """
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self.key_prefix = key_prefix

        if self.redis is None:
            logger.warning("Redis not available, using in-memory fallback for context store")
            self._fallback: InMemoryContextStore | None = InMemoryContextStore(
                max_messages=max_messages
            )
        else:
            logger.info("Using Redis-backed context storage")
            self._fallback = None

    def _context_key(self, session_id: str) -> str:
        return f"{self.key_prefix}context:{session_id}"

    def _messages_key(self, session_id: str) -> str:
        return f"{self.key_prefix}messages:{session_id}"

    async def _call(self, operation: str, func, *args) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except redis.RedisError as e:
            log_error(logger, "Redis error in context store", operation=operation, error=str(e))
            raise ContextStoreError(f"Context store unavailable during {operation}") from e

    def _read_context(self, session_id: str) -> ConversationContext | None:
        raw = self.redis.get(self._context_key(session_id))
        if raw is None:
            return None
        return ConversationContext.model_validate_json(raw)

    def _write_context(self, context: ConversationContext) -> None:
        session_id = context.session.session_id
        pipe = self.redis.pipeline()
        pipe.setex(self._context_key(session_id), self.ttl_seconds, context.model_dump_json())
        pipe.expire(self._messages_key(session_id), self.ttl_seconds)
        pipe.execute()

    def _push_message(self, session_id: str, message: Message) -> None:
        key = self._messages_key(session_id)
        pipe = self.redis.pipeline()
        pipe.lpush(key, message.model_dump_json())
        pipe.ltrim(key, 0, self.max_messages - 1)
        pipe.expire(key, self.ttl_seconds)
        pipe.execute()

    def _read_messages(self, session_id: str, limit: int | None) -> list[Message]:
        end = limit - 1 if limit else -1
        raw_messages = self.redis.lrange(self._messages_key(session_id), 0, end)
        return [Message.model_validate_json(raw) for raw in raw_messages]

    async def get_context(self, session_id: str) -> ConversationContext | None:
        if self._fallback is not None:
            return await self._fallback.get_context(session_id)
        return await self._call("get_context", self._read_context, session_id)

    async def create_session(
        self, session_id: str | None = None, user_id: str | None = None
    ) -> SessionState:
        if self._fallback is not None:
            return await self._fallback.create_session(session_id, user_id)

        session = SessionState(session_id=session_id or str(uuid.uuid4()), user_id=user_id)
        await self._call("create_session", self._write_context, ConversationContext(session=session))
        logger.debug("Created session %s in Redis", session.session_id[:8])
        return session

    async def add_message(self, session_id: str, message: Message) -> Message:
        if self._fallback is not None:
            return await self._fallback.add_message(session_id, message)
        await self._call("add_message", self._push_message, session_id, message)
        return message

    async def update_context(self, session_id: str, **changes: Any) -> ConversationContext:
        if self._fallback is not None:
            return await self._fallback.update_context(session_id, **changes)

        context = await self.get_context(session_id)
        if context is None:
            raise KeyError(f"Session not found: {session_id}")
        updated = _apply_changes(context, changes)
        await self._call("update_context", self._write_context, updated)
        return updated

    async def get_messages(self, session_id: str, limit: int | None = None) -> list[Message]:
        if self._fallback is not None:
            return await self._fallback.get_messages(session_id, limit)
        return await self._call("get_messages", self._read_messages, session_id, limit)

    async def clear_history(self, session_id: str) -> None:
        if self._fallback is not None:
            await self._fallback.clear_history(session_id)
            return

        await self._call("clear_history", self.redis.delete, self._messages_key(session_id))
        context = await self.get_context(session_id)
        if context is not None:
            await self.update_context(
                session_id, recent_intents=[], recent_entities=[], recent_commands=[]
            )
