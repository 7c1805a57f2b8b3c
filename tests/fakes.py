from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional

from core.composer import MessageComposer
from core.config import ComposerConfig, DispatchConfig
from core.dispatcher import ConversationStore, Dispatcher
from core.errors import DeliveryFailure
from core.filter_store import FilterStore
from core.matcher import Matcher
from core.models import Author, Category, ConversationState, PostEvent
from core.processor import NotificationProcessor
from core.rules_engine import FilterRuleEngine

START = 1_700_000_000


class FakeKeyValueStore:
    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.writes = 0

    def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def set(self, key: str, value: Any) -> None:
        self.writes += 1
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.writes += 1
        self.data.pop(key, None)

    def keys(self, prefix: str) -> list[str]:
        return sorted(key for key in self.data if key.startswith(prefix))

    def update(self, key: str, fn: Callable[[Optional[Any]], Optional[Any]]) -> Optional[Any]:
        current = self.data.get(key)
        value = fn(current)
        if value is None:
            if key in self.data:
                self.remove(key)
        elif value != current:
            self.set(key, value)
        return value


class FakeTagRegistry:
    def __init__(self, tags: Iterable[str] = ("urgent", "misc", "release")) -> None:
        self.tags = set(tags)

    def existing(self, names: Iterable[str]) -> list[str]:
        return [name for name in names if name in self.tags]


class FakeCategoryRegistry:
    def __init__(self, categories: Iterable[Category] = ()) -> None:
        self._by_id = {category.id: category for category in categories}

    def get(self, category_id: str) -> Optional[Category]:
        return self._by_id.get(category_id)

    def find(self, slug_or_id: str) -> Optional[Category]:
        if slug_or_id in self._by_id:
            return self._by_id[slug_or_id]
        return next((c for c in self._by_id.values() if c.slug == slug_or_id), None)


class FakeFormatter:
    def excerpt(self, post: PostEvent) -> str:
        return f"excerpt of {post.post_id}"


class AllowAll:
    def can_see(self, post: PostEvent) -> bool:
        return True


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeTransport:
    """Records vendor calls; yields once per call so concurrency can interleave."""

    supports_threads = True

    def __init__(
        self,
        clock: FakeClock,
        fail_channels: Iterable[str] = (),
        crash_channels: Iterable[str] = (),
    ) -> None:
        self._clock = clock
        self.fail_channels = set(fail_channels)
        self.crash_channels = set(crash_channels)
        self.posted: list[dict[str, Any]] = []
        self.updated: list[tuple[ConversationState, list[dict[str, Any]]]] = []
        self._seq = 0

    async def post_message(self, message: dict[str, Any]) -> Optional[ConversationState]:
        await asyncio.sleep(0)
        if message["channel"] in self.fail_channels:
            raise DeliveryFailure(message["channel"], "channel_not_found")
        if message["channel"] in self.crash_channels:
            raise RuntimeError("connection reset mid-response")
        self.posted.append(message)
        self._seq += 1
        return ConversationState(
            ts=f"{int(self._clock())}.{self._seq:06d}",
            message={"username": message["username"], "text": "", "attachments": message["attachments"]},
            channel=f"C-{message['channel']}",
        )

    async def update_message(
        self,
        state: ConversationState,
        attachments: list[dict[str, Any]],
    ) -> ConversationState:
        await asyncio.sleep(0)
        self.updated.append((state, attachments))
        return ConversationState(
            ts=state.ts,
            message={**state.message, "attachments": attachments},
            channel=state.channel,
        )


class FakeWebhookTransport:
    supports_threads = False

    def __init__(self) -> None:
        self.posted: list[dict[str, Any]] = []

    async def post_message(self, message: dict[str, Any]) -> Optional[ConversationState]:
        self.posted.append(message)
        return None

    async def update_message(self, state, attachments):
        raise AssertionError("webhooks cannot update")


GENERAL = Category(id="2", slug="general", name="General", color="25AAE2")
SUPPORT = Category(id="3", slug="support", name="Support", color="F7941D")
BUGS = Category(id="4", slug="bugs", name="Bugs", color="E45735", parent_id="3")
UNCATEGORIZED = Category(id="1", slug="uncategorized", name="Uncategorized")


def make_categories() -> FakeCategoryRegistry:
    return FakeCategoryRegistry([GENERAL, SUPPORT, BUGS, UNCATEGORIZED])


def make_post(**overrides: Any) -> PostEvent:
    fields: dict[str, Any] = {
        "post_id": 100,
        "topic_id": 10,
        "topic_title": "Welcome aboard",
        "category_id": GENERAL.id,
        "author": Author(username="jdoe", name="Jane Doe", avatar_url="https://forum.test/a.png"),
        "url": "https://forum.test/t/welcome-aboard/10/1",
        "cooked": "<p>Hello</p>",
        "tags": (),
        "is_first_post": True,
        "post_number": 1,
    }
    fields.update(overrides)
    return PostEvent(**fields)


class Harness:
    """Core services wired with fakes."""

    def __init__(
        self,
        transport=None,
        dispatch_config: DispatchConfig = DispatchConfig(),
        permissions=None,
    ) -> None:
        self.clock = FakeClock()
        self.kv = FakeKeyValueStore()
        self.store = FilterStore(self.kv)
        self.rules = FilterRuleEngine(self.store, FakeTagRegistry())
        self.categories = make_categories()
        self.composer = MessageComposer(
            ComposerConfig(site_title="Example Forum", icon_url="https://forum.test/icon.png"),
            self.categories,
            FakeFormatter(),
        )
        self.transport = transport if transport is not None else FakeTransport(self.clock)
        self.conversations = ConversationStore(self.kv)
        self.dispatcher = Dispatcher(
            composer=self.composer,
            transport=self.transport,
            conversations=self.conversations,
            config=dispatch_config,
            clock=self.clock,
        )
        self.processor = NotificationProcessor(
            matcher=Matcher(self.store),
            dispatcher=self.dispatcher,
            permissions=permissions or AllowAll(),
        )
