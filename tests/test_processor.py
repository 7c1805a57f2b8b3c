from __future__ import annotations

import asyncio

from core.models import FilterLevel, PostEvent

from fakes import GENERAL, SUPPORT, Harness, make_post


class DenyAll:
    def can_see(self, post: PostEvent) -> bool:
        return False


def test_follow_category_delivers_new_topic_but_not_replies() -> None:
    harness = Harness()
    harness.rules.set_category_filter("welcome", GENERAL.id, FilterLevel.FOLLOW)

    created = asyncio.run(harness.processor.handle(make_post()))
    reply = make_post(post_id=101, is_first_post=False, post_number=2)
    replied = asyncio.run(harness.processor.handle(reply))

    assert [(o.channel, o.action, o.filter) for o in created] == [("#welcome", "created", FilterLevel.FOLLOW)]
    summary = harness.transport.posted[0]["attachments"][0]
    assert summary["title"].startswith("Welcome aboard")
    assert summary["title_link"] == "https://forum.test/t/welcome-aboard/10/1"
    assert replied == []
    assert len(harness.transport.posted) == 1
    assert not harness.transport.updated


def test_watch_tag_delivers_reply_in_any_category() -> None:
    harness = Harness()
    harness.rules.set_tag_filter("welcome", None, FilterLevel.WATCH, "urgent")

    reply = make_post(
        post_id=300,
        topic_id=30,
        category_id=SUPPORT.id,
        tags=("urgent", "misc"),
        is_first_post=False,
        post_number=4,
    )
    outcomes = asyncio.run(harness.processor.handle(reply))

    assert [(o.channel, o.filter, o.ok) for o in outcomes] == [("#welcome", FilterLevel.WATCH, True)]


def test_muted_category_with_tag_watch_still_fires_tag_rule() -> None:
    harness = Harness()
    harness.rules.set_category_filter("welcome", GENERAL.id, FilterLevel.MUTE)
    harness.rules.set_tag_filter("welcome", None, FilterLevel.WATCH, "urgent")

    outcomes = asyncio.run(harness.processor.handle(make_post(tags=("urgent",))))
    untagged = asyncio.run(harness.processor.handle(make_post(post_id=101, topic_id=11)))

    assert [o.channel for o in outcomes] == ["#welcome"]
    assert untagged == []


def test_hidden_posts_are_skipped_silently() -> None:
    harness = Harness(permissions=DenyAll())
    harness.rules.set_category_filter("welcome", None, FilterLevel.WATCH)

    assert asyncio.run(harness.processor.handle(make_post())) == []
    assert harness.transport.posted == []


def test_private_messages_and_small_actions_are_skipped() -> None:
    harness = Harness()
    harness.rules.set_category_filter("welcome", None, FilterLevel.WATCH)

    private = make_post(is_private_message=True)
    small_action = make_post(post_type="small_action")

    assert asyncio.run(harness.processor.handle(private)) == []
    assert asyncio.run(harness.processor.handle(small_action)) == []
    assert harness.transport.posted == []


def test_no_matching_rules_sends_nothing() -> None:
    harness = Harness()

    assert asyncio.run(harness.processor.handle(make_post())) == []
    assert harness.transport.posted == []


def test_send_test_goes_to_requested_channel() -> None:
    harness = Harness()

    outcome = asyncio.run(harness.processor.send_test(make_post(), "#qa"))

    assert outcome.ok
    assert harness.transport.posted[0]["channel"] == "#qa"
