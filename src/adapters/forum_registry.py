"""Config-backed forum collaborators.

The relay does not own tags, categories or permissions; these adapters read
them from config.json so the CLI can run without a live forum connection.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from core.models import Category, PostEvent


def _category_from_config(entry: dict[str, Any]) -> Category:
    parent_id = entry.get("parent_id")
    return Category(
        id=str(entry["id"]),
        slug=str(entry.get("slug") or entry["id"]).lower(),
        name=str(entry.get("name") or entry.get("slug") or entry["id"]),
        color=str(entry.get("color") or "0088CC"),
        parent_id=str(parent_id) if parent_id is not None else None,
    )


class StaticCategoryRegistry:
    """Category lookups by id or slug."""

    def __init__(self, categories: Iterable[dict[str, Any]]) -> None:
        self._by_id: dict[str, Category] = {}
        for entry in categories:
            if "id" not in entry:
                continue
            category = _category_from_config(entry)
            self._by_id[category.id] = category

    def get(self, category_id: str) -> Optional[Category]:
        return self._by_id.get(str(category_id))

    def find(self, slug_or_id: str) -> Optional[Category]:
        category = self.get(slug_or_id)
        if category is not None:
            return category
        wanted = slug_or_id.strip().lower()
        return next((c for c in self._by_id.values() if c.slug == wanted), None)

    def all(self) -> list[Category]:
        return sorted(self._by_id.values(), key=lambda category: category.slug)


class StaticTagRegistry:
    """Tag existence checks; lookups ignore case, results use the forum's spelling."""

    def __init__(self, tags: Iterable[str]) -> None:
        self._tags = {tag.lower(): tag for tag in tags if tag}

    def existing(self, names: Iterable[str]) -> list[str]:
        return [self._tags[name.lower()] for name in names if name.lower() in self._tags]


class HiddenCategoryPolicy:
    """Relay user sees every post except those in hidden categories."""

    def __init__(self, hidden_categories: Iterable[Any] = ()) -> None:
        self._hidden = {str(category_id) for category_id in hidden_categories}

    def can_see(self, post: PostEvent) -> bool:
        return post.category_id not in self._hidden
