"""Forum-to-core post mapping adapter.

This keeps the forum's JSON payload shape out of the core pipeline.
"""

from __future__ import annotations

from typing import Any, Optional

from core.models import REGULAR_POST, Author, PostEvent

AVATAR_SIZE = 45
PRIVATE_MESSAGE = "private_message"

# Forum post_type codes; only regular posts are relayed.
POST_TYPES = {
    1: REGULAR_POST,
    2: "moderator_action",
    3: "small_action",
    4: "whisper",
}


def _absolute(base_url: str, path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    if path.startswith(("http://", "https://")):
        return path
    if path.startswith("//"):
        return f"https:{path}"
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _post_type(raw: Any) -> str:
    if raw is None:
        return REGULAR_POST
    if isinstance(raw, int):
        return POST_TYPES.get(raw, str(raw))
    return str(raw)


def _avatar_url(payload: dict[str, Any], base_url: str) -> Optional[str]:
    template = payload.get("avatar_template")
    if template:
        return _absolute(base_url, template.replace("{size}", str(AVATAR_SIZE)))
    return _absolute(base_url, payload.get("avatar_url"))


def post_from_payload(payload: dict[str, Any], base_url: str = "") -> PostEvent:
    """Build a core PostEvent from a forum post JSON payload."""

    topic_id = int(payload["topic_id"])
    post_number = int(payload.get("post_number", 1))
    category_id = payload.get("category_id")

    url = payload.get("url")
    if not url:
        slug = payload.get("topic_slug") or "-"
        url = f"/t/{slug}/{topic_id}/{post_number}"

    return PostEvent(
        post_id=int(payload["id"]),
        topic_id=topic_id,
        topic_title=payload.get("topic_title") or "",
        category_id=str(category_id) if category_id is not None else None,
        author=Author(
            username=payload["username"],
            name=payload.get("name") or "",
            avatar_url=_avatar_url(payload, base_url),
        ),
        url=_absolute(base_url, url) or url,
        cooked=payload.get("cooked") or "",
        tags=tuple(payload.get("tags") or ()),
        is_first_post=post_number == 1,
        post_number=post_number,
        post_type=_post_type(payload.get("post_type")),
        is_private_message=payload.get("archetype") == PRIVATE_MESSAGE,
    )
