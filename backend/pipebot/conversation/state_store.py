"""
Conversation State Store - Redis-backed storage for per-channel conversations.

Stores ConversationState objects in Redis with automatic expiration, so an
abandoned conversation disappears on its own.
Falls back to in-memory storage if Redis is unavailable or not configured.

The store is injected into the coordinator; there is no module-level
instance.
"""

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from dotenv import load_dotenv

from pipebot.conversation.conversation_state import ConversationState

load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
STATE_TTL_SECONDS = int(os.getenv("CONVERSATION_STATE_TTL", 3600))  # 1 hour default
LOCK_TIMEOUT_SECONDS = 30
LOCK_WAIT_SECONDS = 10


class ConversationStateNotFound(Exception):
    """Raised when a channel has no active conversation."""
    pass


class ConversationStore:
    """Redis-backed conversation store with automatic expiration."""

    def __init__(self, redis_url: Optional[str] = REDIS_URL, ttl: int = STATE_TTL_SECONDS):
        self.ttl = ttl
        self._redis: Optional[redis.Redis] = None
        self._redis_url = redis_url
        self._fallback_store: dict[str, dict] = {}
        self._fallback_locks: dict[str, threading.Lock] = {}
        # Threads holding or waiting for each fallback lock
        self._fallback_lock_users: dict[str, int] = {}
        self._fallback_locks_guard = threading.Lock()
        # Empty URL means "in-memory only"
        self._use_fallback = not redis_url

    def _get_redis(self) -> Optional[redis.Redis]:
        """Lazy initialization of Redis connection."""
        if self._use_fallback:
            return None

        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self._redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5
                )
                # Test connection
                self._redis.ping()
                logger.info(f"Connected to Redis at {self._redis_url}")
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning(f"Redis unavailable, using in-memory fallback: {e}")
                self._redis = None
                self._use_fallback = True
                return None
        return self._redis

    def _key(self, channel: str) -> str:
        """Generate Redis key for a channel."""
        return f"conversation:state:{channel}"

    def _lock_key(self, channel: str) -> str:
        return f"conversation:lock:{channel}"

    def _is_expired(self, data: dict) -> bool:
        return time.time() - float(data.get("updated_at", 0)) > self.ttl

    # --------------- LOCKING ---------------

    @contextmanager
    def lock(self, channel: str) -> Iterator[None]:
        """
        Hold the per-channel lock for a read-modify-write of its state.

        Uses a Redis lock when Redis is available so several workers can
        share the store; a process-local lock otherwise, or when the Redis
        lock cannot be acquired.
        """
        r = self._get_redis()
        if r is not None:
            try:
                redis_lock = r.lock(
                    self._lock_key(channel),
                    timeout=LOCK_TIMEOUT_SECONDS,
                    blocking_timeout=LOCK_WAIT_SECONDS,
                )
                acquired = redis_lock.acquire()
            except redis.RedisError as e:
                logger.error(f"Redis lock for {channel} failed, using local lock: {e}")
                acquired = False

            if acquired:
                try:
                    yield
                finally:
                    try:
                        redis_lock.release()
                    except redis.RedisError as e:
                        logger.warning(f"Could not release Redis lock for {channel}: {e}")
                return

            logger.warning(f"Redis lock for {channel} not acquired, using local lock")

        with self._fallback_locks_guard:
            channel_lock = self._fallback_locks.setdefault(channel, threading.Lock())
            self._fallback_lock_users[channel] = self._fallback_lock_users.get(channel, 0) + 1
        try:
            with channel_lock:
                yield
        finally:
            with self._fallback_locks_guard:
                self._fallback_lock_users[channel] -= 1
                if self._fallback_lock_users[channel] == 0 and channel not in self._fallback_store:
                    self._forget_lock(channel)

    def _forget_lock(self, channel: str) -> None:
        """Drop an unused fallback lock. Caller holds the guard."""
        if self._fallback_lock_users.get(channel, 0) == 0:
            self._fallback_locks.pop(channel, None)
            self._fallback_lock_users.pop(channel, None)

    def _sweep_expired(self) -> None:
        """Remove abandoned conversations from the in-memory fallback."""
        with self._fallback_locks_guard:
            expired = [c for c, data in self._fallback_store.items() if self._is_expired(data)]
            for channel in expired:
                self._fallback_store.pop(channel, None)
                self._forget_lock(channel)
        if expired:
            logger.info(f"Swept {len(expired)} expired conversation(s) from in-memory fallback")

    # --------------- CRUD ---------------

    def save(self, state: ConversationState) -> None:
        """Save conversation state with TTL (last write wins)."""
        r = self._get_redis()
        data = state.to_dict()

        if r is None:
            self._sweep_expired()
            self._fallback_store[state.channel] = data
            logger.info(
                f"Saved conversation for {state.channel} to in-memory fallback "
                f"(question={state.pending_question_index}, answers={len(state.collected_answers)})"
            )
            return

        try:
            r.setex(self._key(state.channel), self.ttl, json.dumps(data))
            logger.info(
                f"Saved conversation for {state.channel} to Redis with TTL {self.ttl}s "
                f"(question={state.pending_question_index}, answers={len(state.collected_answers)})"
            )
        except redis.RedisError as e:
            logger.error(f"Redis save failed, using fallback: {e}")
            self._sweep_expired()
            self._fallback_store[state.channel] = data

    def load(self, channel: str) -> ConversationState:
        """Load conversation state. Raises ConversationStateNotFound if there is none."""
        r = self._get_redis()

        if r is None:
            data = self._fallback_store.get(channel)
            if data is None:
                raise ConversationStateNotFound(channel)
            if self._is_expired(data):
                logger.info(f"Conversation for {channel} expired in fallback store")
                self._fallback_store.pop(channel, None)
                raise ConversationStateNotFound(channel)
            return ConversationState.from_dict(data)

        try:
            raw = r.get(self._key(channel))
            if raw is None:
                raise ConversationStateNotFound(channel)
            logger.debug(f"Loaded conversation for {channel} from Redis")
            return ConversationState.from_dict(json.loads(raw))
        except redis.RedisError as e:
            logger.error(f"Redis load failed, checking fallback: {e}")
            data = self._fallback_store.get(channel)
            if data is None or self._is_expired(data):
                raise ConversationStateNotFound(channel)
            return ConversationState.from_dict(data)

    def get(self, channel: str) -> Optional[ConversationState]:
        """Like load(), but returns None when there is no conversation."""
        try:
            return self.load(channel)
        except ConversationStateNotFound:
            return None

    def delete(self, channel: str) -> None:
        """Delete conversation state."""
        r = self._get_redis()

        if r is not None:
            try:
                r.delete(self._key(channel))
                logger.info(f"Deleted conversation for {channel}")
            except redis.RedisError as e:
                logger.error(f"Redis delete failed: {e}")

        with self._fallback_locks_guard:
            self._fallback_store.pop(channel, None)
            self._forget_lock(channel)
