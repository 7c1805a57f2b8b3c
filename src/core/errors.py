"""Error taxonomy for the core pipeline."""

from __future__ import annotations


class ForumcastError(Exception):
    """Base class for errors raised by forumcast."""


class TagNotFound(ForumcastError):
    """A subscription referenced a tag the forum does not know about."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Tag not found: {tag}")
        self.tag = tag


class UnknownFilterLevel(ForumcastError, ValueError):
    """A filter level string is not one of mute/watch/follow/unset."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Unknown filter level: {value!r}")
        self.value = value


class PermissionDenied(ForumcastError):
    """The relay user is not allowed to see the post."""


class DeliveryFailure(ForumcastError):
    """Delivery to a single channel failed."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"Delivery to {channel} failed: {reason}")
        self.channel = channel
        self.reason = reason
