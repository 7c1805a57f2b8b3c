from __future__ import annotations

from core.filter_store import FilterStore
from core.matcher import Matcher, dedupe_rules, match_targets
from core.models import DeliveryTarget, FilterLevel, SubscriptionRule

from fakes import FakeKeyValueStore, make_post

WATCH = FilterLevel.WATCH
FOLLOW = FilterLevel.FOLLOW
MUTE = FilterLevel.MUTE


def _rule(channel: str, level: FilterLevel, *tags: str) -> SubscriptionRule:
    return SubscriptionRule(channel=channel, filter=level, tags=tags or None)


def _channels(targets: list[DeliveryTarget]) -> list[str]:
    return [target.channel for target in targets]


def test_tag_matching_is_inclusive() -> None:
    post = make_post(tags=("A",))
    rules = [_rule("#ab", WATCH, "A", "B"), _rule("#bc", WATCH, "B", "C"), _rule("#any", WATCH)]

    assert _channels(match_targets(post, rules)) == ["#ab", "#any"]


def test_tagless_rule_matches_untagged_post() -> None:
    post = make_post(tags=())
    rules = [_rule("#tagged", WATCH, "A"), _rule("#any", WATCH)]

    assert _channels(match_targets(post, rules)) == ["#any"]


def test_follow_only_matches_first_post() -> None:
    rules = [_rule("#follow", FOLLOW), _rule("#watch", WATCH, "urgent")]
    first = make_post(tags=("urgent",), is_first_post=True)
    reply = make_post(tags=("urgent",), is_first_post=False, post_number=2)

    assert match_targets(first, rules) == [
        DeliveryTarget(channel="#follow", filter=FOLLOW),
        DeliveryTarget(channel="#watch", filter=WATCH),
    ]
    assert match_targets(reply, rules) == [DeliveryTarget(channel="#watch", filter=WATCH)]


def test_mute_never_matches() -> None:
    post = make_post(tags=("urgent",))
    rules = [_rule("#muted", MUTE), _rule("#muted-tag", MUTE, "urgent")]

    assert match_targets(post, rules) == []


def test_mute_wins_over_duplicate_identity() -> None:
    rules = [_rule("#welcome", WATCH), _rule("#welcome", MUTE)]

    assert dedupe_rules(rules) == [_rule("#welcome", MUTE)]
    assert match_targets(make_post(), rules) == []


def test_dedupe_keeps_first_of_equal_precedence() -> None:
    rules = [_rule("#welcome", FOLLOW, "a", "b"), _rule("#welcome", WATCH, "b", "a")]

    assert dedupe_rules(rules) == [_rule("#welcome", FOLLOW, "a", "b")]


def test_category_and_all_rules_fire_independently() -> None:
    kv = FakeKeyValueStore()
    store = FilterStore(kv)
    store.save_rules("2", [_rule("#cat", FOLLOW), _rule("#both", WATCH)])
    store.save_rules(None, [_rule("#all", WATCH), _rule("#both", FOLLOW), _rule("#both", WATCH, "urgent")])

    targets = Matcher(store).targets(make_post(category_id="2", tags=("urgent",)))

    assert [(t.channel, t.filter) for t in targets] == [
        ("#cat", FOLLOW),
        ("#both", WATCH),
        ("#all", WATCH),
        ("#both", WATCH),
    ]


def test_post_without_category_uses_all_scope_only() -> None:
    kv = FakeKeyValueStore()
    store = FilterStore(kv)
    store.save_rules(None, [_rule("#all", WATCH)])

    assert _channels(Matcher(store).targets(make_post(category_id=None))) == ["#all"]
