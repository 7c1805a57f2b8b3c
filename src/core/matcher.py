"""Rule matching for post events (core domain)."""

from __future__ import annotations

from typing import Iterable, List

from core.filter_store import FilterStore
from core.models import DeliveryTarget, FilterLevel, PostEvent, SubscriptionRule

# mute must be evaluated before any other level sharing its identity.
PRECEDENCE = {FilterLevel.MUTE: 0, FilterLevel.WATCH: 1, FilterLevel.FOLLOW: 1}


def dedupe_rules(rules: Iterable[SubscriptionRule]) -> List[SubscriptionRule]:
    """Order mutes first, then keep the first rule per (channel, tag set)."""

    ordered = sorted(rules, key=lambda rule: PRECEDENCE[rule.filter])
    seen: set = set()
    unique: List[SubscriptionRule] = []
    for rule in ordered:
        if rule.identity in seen:
            continue
        seen.add(rule.identity)
        unique.append(rule)
    return unique


def match_targets(post: PostEvent, rules: Iterable[SubscriptionRule]) -> List[DeliveryTarget]:
    """Return the channels that should receive ``post``.

    Matching logic:
    - A tagged rule matches when it shares at least one tag with the post;
      a tag-less rule matches any post.
    - mute never delivers.
    - follow only delivers the first post of a topic; watch delivers every post.
    """

    post_tags = set(post.tags)
    targets: List[DeliveryTarget] = []

    for rule in dedupe_rules(rules):
        if rule.tags and not post_tags.intersection(rule.tags):
            continue
        if rule.filter is FilterLevel.MUTE:
            continue
        if rule.filter is FilterLevel.FOLLOW and not post.is_first_post:
            continue
        targets.append(DeliveryTarget(channel=rule.channel, filter=rule.filter))

    return targets


class Matcher:
    """Resolves delivery targets for a post from the stored rules."""

    def __init__(self, store: FilterStore) -> None:
        self._store = store

    def targets(self, post: PostEvent) -> List[DeliveryTarget]:
        rules = list(self._store.get_rules(post.category_id)) if post.category_id else []
        rules.extend(self._store.get_rules(None))
        return match_targets(post, rules)
