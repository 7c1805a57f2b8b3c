"""Subscription rule transitions and the locked rule-editing service (core domain).

Transitions are pure functions over an immutable rule tuple. The service wraps
each one in an atomic read-modify-write against the filter store, serialized
per scope, so two admins editing the same scope never lose each other's
changes, even from separate processes sharing one database.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, List, Optional

from core.errors import TagNotFound
from core.filter_store import FilterStore, Rules, scope_key
from core.models import FilterLevel, SubscriptionRule, normalize_channel, normalize_tags
from core.ports import TagRegistry

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleChange:
    """New rule list for a scope plus what changed relative to the old one."""

    before: Rules
    rules: Rules

    @property
    def changed(self) -> bool:
        return self.before != self.rules

    @property
    def added(self) -> List[SubscriptionRule]:
        return [rule for rule in self.rules if rule not in self.before]

    @property
    def removed(self) -> List[SubscriptionRule]:
        return [rule for rule in self.before if rule not in self.rules]


def _tag_identity(tags: Optional[Iterable[str]]) -> Optional[frozenset[str]]:
    normalized = normalize_tags(tags)
    return frozenset(normalized) if normalized else None


def set_category_filter(rules: Rules, channel: str, level: Optional[FilterLevel]) -> RuleChange:
    """Set or clear the tag-less rule for a channel."""

    updated = list(rules)
    index = next(
        (i for i, rule in enumerate(updated) if rule.channel == channel and not rule.tags),
        None,
    )

    if level is None:
        if index is not None:
            del updated[index]
    elif index is not None:
        updated[index] = replace(updated[index], filter=level)
    else:
        updated.append(SubscriptionRule(channel=channel, filter=level))

    return RuleChange(before=rules, rules=tuple(updated))


def set_tag_filter(rules: Rules, channel: str, level: Optional[FilterLevel], tag: str) -> RuleChange:
    """Move ``tag`` to the channel's tagged rule for ``level``.

    The tag is first stripped from every tagged rule of the channel so that it
    belongs to at most one level; rules left without tags are dropped.
    """

    updated: list[SubscriptionRule] = []
    for rule in rules:
        if rule.channel != channel or not rule.tags or tag not in rule.tags:
            updated.append(rule)
            continue
        remaining = tuple(name for name in rule.tags if name != tag)
        if remaining:
            updated.append(replace(rule, tags=remaining))

    if level is not None:
        index = next(
            (
                i
                for i, rule in enumerate(updated)
                if rule.channel == channel and rule.tags and rule.filter == level
            ),
            None,
        )
        if index is None:
            updated.append(SubscriptionRule(channel=channel, filter=level, tags=(tag,)))
        else:
            existing = updated[index]
            updated[index] = replace(existing, tags=existing.tags + (tag,))

    return RuleChange(before=rules, rules=tuple(updated))


def add_filter(
    rules: Rules,
    channel: str,
    level: FilterLevel,
    tags: Optional[Iterable[str]],
) -> RuleChange:
    """Append a rule; an existing rule with the same identity takes the new level."""

    candidate = SubscriptionRule(channel=channel, filter=level, tags=normalize_tags(tags))
    updated = list(rules)
    for i, rule in enumerate(updated):
        if rule.identity == candidate.identity:
            updated[i] = candidate
            break
    else:
        updated.append(candidate)
    return RuleChange(before=rules, rules=tuple(updated))


def remove_filter(rules: Rules, channel: str, tags: Optional[Iterable[str]]) -> RuleChange:
    """Delete the rule matching exactly ``(channel, tags)``."""

    identity = (channel, _tag_identity(tags))
    updated = tuple(rule for rule in rules if rule.identity != identity)
    return RuleChange(before=rules, rules=updated)


class FilterRuleEngine:
    """Applies rule transitions to persisted scopes atomically."""

    def __init__(self, store: FilterStore, tags: TagRegistry) -> None:
        self._store = store
        self._tags = tags
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, category_id: Optional[str]) -> threading.Lock:
        key = scope_key(category_id)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _apply(
        self,
        category_id: Optional[str],
        transition: Callable[[Rules], RuleChange],
    ) -> RuleChange:
        # The thread lock orders edits inside this process; the store update
        # keeps edits from separate processes from overwriting each other.
        with self._lock_for(category_id):
            before, rules = self._store.update_rules(category_id, lambda current: transition(current).rules)
        change = RuleChange(before=before, rules=rules)
        if change.changed:
            LOGGER.info(
                "Rules updated for %s (+%s/-%s)",
                scope_key(category_id),
                len(change.added),
                len(change.removed),
            )
        return change

    def _canonical_tags(self, tags: Iterable[str], strict: bool = True) -> tuple[str, ...]:
        """Map each tag to the forum's spelling of it.

        Matching against posts is exact, so rules must store the names the
        forum puts on posts. Unknown tags raise TagNotFound unless ``strict``
        is False, in which case they are kept as given.
        """

        wanted = list(tags)
        found = {name.lower(): name for name in self._tags.existing(wanted)}
        canonical: list[str] = []
        for tag in wanted:
            name = found.get(tag.lower())
            if name is None:
                if strict:
                    raise TagNotFound(tag)
                name = tag
            canonical.append(name)
        return tuple(canonical)

    def set_category_filter(
        self,
        channel: str,
        category_id: Optional[str],
        level: Optional[FilterLevel],
    ) -> RuleChange:
        channel = normalize_channel(channel)
        return self._apply(category_id, lambda rules: set_category_filter(rules, channel, level))

    def set_tag_filter(
        self,
        channel: str,
        category_id: Optional[str],
        level: Optional[FilterLevel],
        tag: str,
    ) -> RuleChange:
        channel = normalize_channel(channel)
        # Unsetting a tag that no longer exists must still be possible.
        (tag,) = self._canonical_tags([tag], strict=level is not None)
        return self._apply(category_id, lambda rules: set_tag_filter(rules, channel, level, tag))

    def add_filter(
        self,
        channel: str,
        category_id: Optional[str],
        level: Optional[FilterLevel],
        tags: Optional[Iterable[str]] = None,
    ) -> RuleChange:
        channel = normalize_channel(channel)
        tags = normalize_tags(tags)
        if level is None:
            return self.remove_filter(channel, category_id, tags)
        if tags:
            tags = normalize_tags(self._canonical_tags(tags))
        return self._apply(category_id, lambda rules: add_filter(rules, channel, level, tags))

    def remove_filter(
        self,
        channel: str,
        category_id: Optional[str],
        tags: Optional[Iterable[str]] = None,
    ) -> RuleChange:
        channel = normalize_channel(channel)
        tags = normalize_tags(tags)
        if tags:
            tags = normalize_tags(self._canonical_tags(tags, strict=False))
        return self._apply(category_id, lambda rules: remove_filter(rules, channel, tags))

    def list_filters(self) -> list[dict[str, Any]]:
        """Flatten every scope into rows of channel/category_id/filter/tags."""

        rows: list[dict[str, Any]] = []
        for category_id in self._store.list_scopes():
            for rule in self._store.get_rules(category_id):
                row = rule.to_record()
                row["category_id"] = category_id
                rows.append(row)
        return rows

    def status(self, channel: str) -> list[tuple[Optional[str], SubscriptionRule]]:
        """Return the (category_id, rule) pairs that belong to ``channel``."""

        channel = normalize_channel(channel)
        return [
            (category_id, rule)
            for category_id in self._store.list_scopes()
            for rule in self._store.get_rules(category_id)
            if rule.channel == channel
        ]
