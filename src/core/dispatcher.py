"""Delivery decisions and conversation coalescing (core domain).

For every target channel the dispatcher either starts a new chat thread or
appends to the thread it started recently for the same topic. The per-topic
conversation record is read and written under a per-(topic, channel) lock,
plus a lease in the shared store for dispatchers running in other processes,
so two concurrent posts cannot both decide to start a new thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional

from core.composer import MessageComposer
from core.config import DispatchConfig
from core.errors import DeliveryFailure
from core.models import ConversationState, DeliveryOutcome, DeliveryTarget, PostEvent
from core.ports import ChatTransport, KeyValueStore

LOGGER = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
WEBHOOK = "webhook"
FAILED = "failed"


def conversation_key(topic_id: int, channel: str) -> str:
    return f"topic_{topic_id}_{channel}"


class ConversationStore:
    """Per (topic, channel) conversation records and the lease guarding them.

    The lease is a record in the same key-value store, taken with an atomic
    update, so dispatchers in separate processes sharing one database take
    turns on a conversation. A lease left behind by a crashed process expires
    after ``lease_seconds``.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        lease_seconds: float = 60,
        poll_seconds: float = 0.05,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._lease_seconds = lease_seconds
        self._poll_seconds = poll_seconds
        self._clock = clock

    def get(self, topic_id: int, channel: str) -> Optional[ConversationState]:
        record = self._kv.get(conversation_key(topic_id, channel))
        if not record:
            return None
        try:
            state = ConversationState.from_record(record)
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Ignoring malformed conversation record for topic %s in %s", topic_id, channel)
            return None
        return state

    def set(self, topic_id: int, channel: str, state: ConversationState) -> None:
        self._kv.set(conversation_key(topic_id, channel), state.to_record())

    def _try_claim(self, key: str, owner: str) -> bool:
        now = self._clock()

        def _take(current: Optional[Any]) -> Optional[Any]:
            if isinstance(current, dict) and current.get("expires_at", 0) > now and current.get("owner") != owner:
                return current
            return {"owner": owner, "expires_at": now + self._lease_seconds}

        claimed = self._kv.update(key, _take)
        return isinstance(claimed, dict) and claimed.get("owner") == owner

    def _release(self, key: str, owner: str) -> None:
        self._kv.update(
            key,
            lambda current: None if isinstance(current, dict) and current.get("owner") == owner else current,
        )

    @asynccontextmanager
    async def claim(self, topic_id: int, channel: str) -> AsyncIterator[None]:
        """Hold the conversation lease for the duration of the block."""

        key = f"lease_{conversation_key(topic_id, channel)}"
        owner = uuid.uuid4().hex
        while not self._try_claim(key, owner):
            await asyncio.sleep(self._poll_seconds)
        try:
            yield
        finally:
            self._release(key, owner)


class Dispatcher:
    """Delivers a post to each target channel independently."""

    def __init__(
        self,
        composer: MessageComposer,
        transport: ChatTransport,
        conversations: ConversationStore,
        config: DispatchConfig = DispatchConfig(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._composer = composer
        self._transport = transport
        self._conversations = conversations
        self._config = config
        self._clock = clock
        # Entries disappear once no delivery holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[tuple[int, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, topic_id: int, channel: str) -> asyncio.Lock:
        lock = self._locks.get((topic_id, channel))
        if lock is None:
            lock = self._locks[(topic_id, channel)] = asyncio.Lock()
        return lock

    def can_append(self, state: Optional[ConversationState]) -> bool:
        """Return True when ``state`` is recent enough and small enough to edit."""

        if state is None:
            return False
        age_minutes = (int(self._clock()) - state.created_at) // 60
        if age_minutes >= self._config.freshness_minutes:
            return False
        return len(state.attachments) < self._config.attachment_cap

    async def deliver(self, post: PostEvent, targets: Iterable[DeliveryTarget]) -> List[DeliveryOutcome]:
        """Deliver to every target; one channel failing never stops the rest."""

        outcomes: List[DeliveryOutcome] = []
        for target in targets:
            try:
                delivered = await self._deliver_one(post, target.channel)
            except DeliveryFailure as exc:
                LOGGER.warning("Delivery of post %s to %s failed: %s", post.post_id, target.channel, exc.reason)
                outcome = DeliveryOutcome(
                    channel=target.channel,
                    filter=target.filter,
                    action=FAILED,
                    ok=False,
                    error=exc.reason,
                )
            except Exception as exc:
                LOGGER.exception("Unexpected error delivering post %s to %s", post.post_id, target.channel)
                outcome = DeliveryOutcome(
                    channel=target.channel,
                    filter=target.filter,
                    action=FAILED,
                    ok=False,
                    error=str(exc) or type(exc).__name__,
                )
            else:
                outcome = DeliveryOutcome(
                    channel=target.channel,
                    filter=target.filter,
                    action=delivered.action,
                    ok=True,
                    ts=delivered.ts,
                )
            outcomes.append(outcome)
        return outcomes

    async def send_test(self, post: PostEvent, channel: str) -> DeliveryOutcome:
        """Deliver ``post`` to a single channel regardless of subscriptions."""

        return await self._deliver_one(post, channel)

    async def _deliver_one(self, post: PostEvent, channel: str) -> DeliveryOutcome:
        if not self._transport.supports_threads:
            # Webhooks return no message id, so there is nothing to coalesce into.
            message = self._composer.compose(post, channel, new_thread=True)
            await self._transport.post_message(message)
            return DeliveryOutcome(channel=channel, filter=None, action=WEBHOOK, ok=True)

        async with self._lock_for(post.topic_id, channel), self._conversations.claim(post.topic_id, channel):
            previous = self._conversations.get(post.topic_id, channel)

            if self.can_append(previous):
                attachments = previous.attachments
                attachments.append(self._composer.attachment(post, new_thread=False))
                state = await self._transport.update_message(previous, attachments)
                action = UPDATED
            else:
                message = self._composer.compose(post, channel, new_thread=True)
                state = await self._transport.post_message(message)
                action = CREATED

            if state is not None:
                self._conversations.set(post.topic_id, channel, state)

        LOGGER.info("Post %s %s in %s", post.post_id, action, channel)
        return DeliveryOutcome(
            channel=channel,
            filter=None,
            action=action,
            ok=True,
            ts=state.ts if state is not None else None,
        )
