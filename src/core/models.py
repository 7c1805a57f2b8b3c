"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any forum- or vendor-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

from core.errors import UnknownFilterLevel

UNSET = "unset"
REGULAR_POST = "regular"


class FilterLevel(str, Enum):
    """Subscription intensity for a channel."""

    MUTE = "mute"
    WATCH = "watch"
    FOLLOW = "follow"


def parse_filter_level(value: str) -> Optional[FilterLevel]:
    """Parse a filter level at the boundary; ``"unset"`` maps to None."""

    normalized = str(value).strip().lower()
    if normalized == UNSET:
        return None
    try:
        return FilterLevel(normalized)
    except ValueError:
        raise UnknownFilterLevel(value) from None


def normalize_tags(tags: Optional[Iterable[str]]) -> Optional[Tuple[str, ...]]:
    """Return tags as an ordered tuple without duplicates, or None when empty."""

    if not tags:
        return None
    ordered: list[str] = []
    for tag in tags:
        if tag and tag not in ordered:
            ordered.append(tag)
    return tuple(ordered) or None


@dataclass(frozen=True)
class SubscriptionRule:
    """A channel subscription inside one category scope."""

    channel: str
    filter: FilterLevel
    tags: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", normalize_tags(self.tags))

    @property
    def identity(self) -> tuple[str, Optional[frozenset[str]]]:
        """Identity used for uniqueness: channel plus the unordered tag set."""

        return self.channel, frozenset(self.tags) if self.tags else None

    def to_record(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "filter": self.filter.value,
            "tags": list(self.tags) if self.tags else None,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "SubscriptionRule":
        """Build a rule from a persisted dict.

        Raises KeyError/ValueError for records that cannot be interpreted, so
        the store can decide to skip them.
        """

        channel = record["channel"]
        if not channel:
            raise ValueError("rule has no channel")
        level = parse_filter_level(record["filter"])
        if level is None:
            raise ValueError("persisted rule cannot be unset")
        return cls(channel=channel, filter=level, tags=record.get("tags"))


@dataclass(frozen=True)
class Category:
    """Category data consumed from the host's category registry."""

    id: str
    slug: str
    name: str
    color: str = "0088CC"
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class Author:
    username: str
    name: str = ""
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class PostEvent:
    """Minimal post-creation context used by the dispatch pipeline."""

    post_id: int
    topic_id: int
    topic_title: str
    category_id: Optional[str]
    author: Author
    url: str
    cooked: str = ""
    tags: Tuple[str, ...] = ()
    is_first_post: bool = False
    post_number: int = 1
    post_type: str = REGULAR_POST
    is_private_message: bool = False


@dataclass(frozen=True)
class DeliveryTarget:
    """A channel that should receive a post, with the level that matched."""

    channel: str
    filter: FilterLevel


@dataclass
class ConversationState:
    """Last delivery of a topic to a channel, as returned by the vendor."""

    ts: str
    message: dict[str, Any] = field(default_factory=dict)
    channel: Optional[str] = None

    @property
    def created_at(self) -> int:
        """Epoch seconds encoded in the vendor timestamp (``"<secs>.<seq>"``)."""

        return int(str(self.ts).split(".", 1)[0])

    @property
    def attachments(self) -> list[dict[str, Any]]:
        return list(self.message.get("attachments") or [])

    def to_record(self) -> dict[str, Any]:
        return {"ts": self.ts, "message": self.message, "channel": self.channel}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ConversationState":
        ts = str(record["ts"])
        # Reject timestamps that cannot be aged.
        int(ts.split(".", 1)[0])
        return cls(
            ts=ts,
            message=dict(record.get("message") or {}),
            channel=record.get("channel"),
        )


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one delivery attempt to one channel."""

    channel: str
    filter: Optional[FilterLevel]
    action: str
    ok: bool
    error: Optional[str] = None
    ts: Optional[str] = None


def normalize_channel(name: str) -> str:
    """Return a channel reference with an explicit ``#`` or ``@`` prefix."""

    name = name.strip()
    if name.startswith(("#", "@")):
        return name
    return f"#{name}"
