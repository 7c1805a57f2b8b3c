from __future__ import annotations

from adapters.forum_mapper import post_from_payload
from adapters.forum_registry import HiddenCategoryPolicy, StaticCategoryRegistry, StaticTagRegistry

from fakes import make_post

BASE_URL = "https://forum.test"


def test_post_from_payload_first_post() -> None:
    payload = {
        "id": 501,
        "topic_id": 42,
        "topic_slug": "release-notes",
        "topic_title": "Release notes",
        "post_number": 1,
        "post_type": 1,
        "category_id": 2,
        "tags": ["release"],
        "username": "jdoe",
        "name": "Jane Doe",
        "avatar_template": "/user_avatar/forum.test/jdoe/{size}/1.png",
        "cooked": "<p>Hi</p>",
    }

    post = post_from_payload(payload, BASE_URL)

    assert post.post_id == 501
    assert post.category_id == "2"
    assert post.tags == ("release",)
    assert post.is_first_post
    assert post.post_type == "regular"
    assert not post.is_private_message
    assert post.url == "https://forum.test/t/release-notes/42/1"
    assert post.author.avatar_url == "https://forum.test/user_avatar/forum.test/jdoe/45/1.png"


def test_post_from_payload_reply_and_private_message() -> None:
    payload = {
        "id": 502,
        "topic_id": 42,
        "post_number": 3,
        "post_type": 3,
        "archetype": "private_message",
        "username": "jdoe",
        "url": "https://elsewhere.test/p/502",
    }

    post = post_from_payload(payload, BASE_URL)

    assert not post.is_first_post
    assert post.post_type == "small_action"
    assert post.is_private_message
    assert post.category_id is None
    assert post.url == "https://elsewhere.test/p/502"
    assert post.author.avatar_url is None


def test_category_registry_finds_by_slug_or_id() -> None:
    registry = StaticCategoryRegistry(
        [
            {"id": 3, "slug": "support", "name": "Support"},
            {"id": 4, "slug": "Bugs", "name": "Bugs", "parent_id": 3},
            {"slug": "broken"},
        ]
    )

    assert registry.find("support").id == "3"
    assert registry.find("4").parent_id == "3"
    assert registry.find("BUGS").slug == "bugs"
    assert registry.find("broken") is None
    assert [c.slug for c in registry.all()] == ["bugs", "support"]


def test_tag_registry_returns_forum_spelling_of_existing_tags() -> None:
    registry = StaticTagRegistry(["urgent", "Release"])

    assert registry.existing(["URGENT", "release", "missing"]) == ["urgent", "Release"]


def test_hidden_category_policy() -> None:
    policy = HiddenCategoryPolicy([7])

    assert policy.can_see(make_post(category_id="2"))
    assert not policy.can_see(make_post(category_id="7"))
