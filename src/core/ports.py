"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, forum lookups and chat
delivery so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Protocol

from core.models import Category, ConversationState, PostEvent


class KeyValueStore(Protocol):
    """Opaque JSON key-value persistence."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self, prefix: str) -> list[str]:
        ...

    def update(self, key: str, fn: Callable[[Optional[Any]], Optional[Any]]) -> Optional[Any]:
        """Atomically replace the value of ``key`` with ``fn(current)``.

        Other writers, including other processes sharing the store, cannot
        interleave between the read and the write. Returning None removes the
        key; returning a value equal to the current one writes nothing. The
        resulting value is returned.
        """
        ...


class TagRegistry(Protocol):
    def existing(self, names: Iterable[str]) -> list[str]:
        """Return the forum's own names for those of ``names`` that exist."""
        ...


class CategoryRegistry(Protocol):
    def get(self, category_id: str) -> Optional[Category]:
        ...

    def find(self, slug_or_id: str) -> Optional[Category]:
        ...


class PermissionPolicy(Protocol):
    def can_see(self, post: PostEvent) -> bool:
        ...


class ExcerptFormatter(Protocol):
    def excerpt(self, post: PostEvent) -> str:
        ...


class ChatTransport(Protocol):
    """Outbound delivery to the chat vendor."""

    # Webhook-style transports return no message id, so they cannot edit.
    supports_threads: bool

    async def post_message(self, message: dict[str, Any]) -> Optional[ConversationState]:
        ...

    async def update_message(
        self,
        state: ConversationState,
        attachments: list[dict[str, Any]],
    ) -> ConversationState:
        ...
