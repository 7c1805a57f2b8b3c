"""Subscription rule persistence on top of the key-value port."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, Tuple

from core.models import SubscriptionRule
from core.ports import KeyValueStore

LOGGER = logging.getLogger(__name__)

KEY_PREFIX = "category_"
WILDCARD = "*"

Rules = Tuple[SubscriptionRule, ...]


def scope_key(category_id: Optional[str] = None) -> str:
    """Return the storage key for a category scope; None is all categories."""

    return f"{KEY_PREFIX}{category_id if category_id else WILDCARD}"


def scope_from_key(key: str) -> Optional[str]:
    scope = key[len(KEY_PREFIX) :]
    return None if scope == WILDCARD else scope


def _decode(key: str, records: Optional[Iterable[Any]]) -> Rules:
    rules: list[SubscriptionRule] = []
    for record in records or []:
        try:
            rules.append(SubscriptionRule.from_record(record))
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Skipping malformed rule in %s: %r", key, record)
    return tuple(rules)


def _encode(rules: Iterable[SubscriptionRule]) -> Optional[list[dict[str, Any]]]:
    # An empty scope is removed rather than stored as [].
    return [rule.to_record() for rule in rules] or None


class FilterStore:
    """Reads and writes the ordered rule list of each scope."""

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def get_rules(self, category_id: Optional[str] = None) -> Rules:
        key = scope_key(category_id)
        return _decode(key, self._kv.get(key))

    def save_rules(self, category_id: Optional[str], rules: Iterable[SubscriptionRule]) -> None:
        key = scope_key(category_id)
        records = _encode(rules)
        if records is None:
            self._kv.remove(key)
            return
        self._kv.set(key, records)

    def update_rules(
        self,
        category_id: Optional[str],
        edit: Callable[[Rules], Rules],
    ) -> Tuple[Rules, Rules]:
        """Apply ``edit`` to a scope's rules atomically; return (before, after).

        Nothing is written when ``edit`` leaves the rules unchanged.
        """

        key = scope_key(category_id)
        result: dict[str, Rules] = {}

        def _apply(records: Optional[Any]) -> Optional[Any]:
            before = _decode(key, records)
            after = tuple(edit(before))
            result["before"], result["after"] = before, after
            if after == before:
                return records
            return _encode(after)

        self._kv.update(key, _apply)
        return result["before"], result["after"]

    def list_scopes(self) -> list[Optional[str]]:
        """Return every scope with stored rules; the wildcard sorts last."""

        scopes = [scope_from_key(key) for key in self._kv.keys(KEY_PREFIX)]
        return sorted(scopes, key=lambda scope: (scope is None, scope or ""))
