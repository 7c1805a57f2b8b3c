"""Core post processing pipeline.

This module is integration-agnostic. It only relies on ports for storage,
permissions and delivery, enabling other forums or chat vendors without
changes here.
"""

from __future__ import annotations

import logging
from typing import List

from core.dispatcher import Dispatcher
from core.errors import PermissionDenied
from core.matcher import Matcher
from core.models import REGULAR_POST, DeliveryOutcome, PostEvent
from core.ports import PermissionPolicy

LOGGER = logging.getLogger(__name__)


class NotificationProcessor:
    """Orchestrates visibility checks, matching and delivery for one post."""

    def __init__(
        self,
        matcher: Matcher,
        dispatcher: Dispatcher,
        permissions: PermissionPolicy,
    ) -> None:
        self._matcher = matcher
        self._dispatcher = dispatcher
        self._permissions = permissions

    def _ensure_visible(self, post: PostEvent) -> None:
        if not self._permissions.can_see(post):
            raise PermissionDenied(f"post {post.post_id} is not visible to the relay user")

    async def handle(self, post: PostEvent) -> List[DeliveryOutcome]:
        """Process one post-creation event through the pipeline."""

        # Small actions, whispers and private messages never leave the forum.
        if post.post_type != REGULAR_POST or post.is_private_message:
            return []

        try:
            self._ensure_visible(post)
        except PermissionDenied as exc:
            LOGGER.debug("Skipping post %s: %s", post.post_id, exc)
            return []

        targets = self._matcher.targets(post)
        if not targets:
            return []

        outcomes = await self._dispatcher.deliver(post, targets)
        failed = sum(1 for outcome in outcomes if not outcome.ok)
        LOGGER.info(
            "Post %s dispatched: targets=%s, failed=%s",
            post.post_id,
            len(outcomes),
            failed,
        )
        return outcomes

    async def send_test(self, post: PostEvent, channel: str) -> DeliveryOutcome:
        """Send ``post`` to ``channel`` ignoring subscriptions, for admins."""

        return await self._dispatcher.send_test(post, channel)
