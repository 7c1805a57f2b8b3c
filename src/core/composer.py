"""Outbound message composition (core domain)."""

from __future__ import annotations

import re
from typing import Any, Optional

from core.config import ComposerConfig
from core.models import Author, PostEvent
from core.ports import CategoryRegistry, ExcerptFormatter

UNCATEGORIZED = "uncategorized"


def display_name(author: Author) -> str:
    """Return "Full Name @username" unless the name just repeats the username."""

    handle = f"@{author.username}"
    full_name = re.sub(r"\s+", " ", author.name or "").strip()
    if not full_name:
        return handle

    username = author.username.casefold()
    if full_name.replace(" ", "_").casefold() == username:
        return handle
    if full_name.replace(" ", "").casefold() == username:
        return handle
    return f"{full_name} {handle}"


class MessageComposer:
    """Builds chat payloads for a post."""

    def __init__(
        self,
        config: ComposerConfig,
        categories: CategoryRegistry,
        formatter: ExcerptFormatter,
    ) -> None:
        self._config = config
        self._categories = categories
        self._formatter = formatter

    def _category_label(self, category_id: Optional[str]) -> str:
        category = self._categories.get(category_id) if category_id else None
        if category is None or category.slug == UNCATEGORIZED:
            return ""
        parent = self._categories.get(category.parent_id) if category.parent_id else None
        if parent is not None:
            return f"[{parent.name}/{category.name}]"
        return f"[{category.name}]"

    def _color(self, category_id: Optional[str]) -> Optional[str]:
        category = self._categories.get(category_id) if category_id else None
        if category is None or not category.color:
            return None
        return f"#{category.color.lstrip('#')}"

    def title(self, post: PostEvent) -> str:
        parts = [post.topic_title, self._category_label(post.category_id), ", ".join(post.tags)]
        return " ".join(part for part in parts if part)

    def attachment(self, post: PostEvent, new_thread: bool) -> dict[str, Any]:
        """Build the summary attachment for one post.

        Title and links are only set on a new thread; re-sending them on edits
        makes the chat client re-render the link preview every time.
        """

        author = display_name(post.author)
        summary: dict[str, Any] = {
            "fallback": f"{post.topic_title} - {author}",
            "author_name": author,
            "author_icon": post.author.avatar_url,
            "color": self._color(post.category_id),
            "text": self._formatter.excerpt(post),
            "mrkdwn_in": ["text"],
        }
        if new_thread:
            summary["title"] = self.title(post)
            summary["title_link"] = post.url
            summary["thumb_url"] = post.url
        return summary

    def compose(self, post: PostEvent, channel: str, new_thread: bool = True) -> dict[str, Any]:
        return {
            "channel": channel,
            "username": self._config.site_title,
            "icon_url": self._config.icon_url,
            "attachments": [self.attachment(post, new_thread)],
        }
