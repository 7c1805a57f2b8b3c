"""Slack delivery adapters.

Two mutually exclusive modes are supported:
- token mode posts through the Web API and can edit earlier messages;
- webhook mode posts the whole payload to an incoming webhook and keeps no
  state, since the webhook does not return a message id.
"""

from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Optional

from core.errors import DeliveryFailure
from core.models import ConversationState

LOGGER = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


def _send(request: urllib.request.Request, channel: str, timeout: float) -> bytes:
    # We use a blocking HTTP call because delivery is sequential per event; the
    # adapter boundary makes it easy to swap for an async client later.
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.read()
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        raise DeliveryFailure(channel, f"HTTP {e.code}: {body}") from e
    except urllib.error.URLError as e:
        raise DeliveryFailure(channel, str(e.reason)) from e
    except OSError as e:
        raise DeliveryFailure(channel, str(e)) from e
    except http.client.HTTPException as e:
        # Malformed responses (BadStatusLine, IncompleteRead) are not OSErrors.
        raise DeliveryFailure(channel, f"{type(e).__name__}: {e}") from e


class SlackApiTransport:
    """Token mode: chat.postMessage for new threads, chat.update for edits."""

    supports_threads = True

    def __init__(self, access_token: str, base_url: str = SLACK_API_URL, timeout: float = 10) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _call(self, method: str, fields: dict[str, Any], channel: str) -> dict[str, Any]:
        data = urllib.parse.urlencode(
            {name: value for name, value in fields.items() if value is not None}
        ).encode("utf-8")
        request = urllib.request.Request(f"{self._base_url}/{method}", data=data, method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        body = _send(request, channel, self._timeout)
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise DeliveryFailure(channel, f"invalid JSON from {method}") from e
        if not isinstance(payload, dict) or not payload.get("ok"):
            error = payload.get("error", "unknown error") if isinstance(payload, dict) else "unknown error"
            raise DeliveryFailure(channel, f"{method}: {error}")
        if not payload.get("ts"):
            raise DeliveryFailure(channel, f"{method}: response has no ts")
        return payload

    async def post_message(self, message: dict[str, Any]) -> Optional[ConversationState]:
        channel = message["channel"]
        payload = self._call(
            "chat.postMessage",
            {
                "token": self._access_token,
                "username": message.get("username"),
                "icon_url": message.get("icon_url"),
                "channel": channel.lstrip("#"),
                "attachments": json.dumps(message["attachments"]),
            },
            channel,
        )
        sent = payload.get("message") or {"attachments": message["attachments"]}
        return ConversationState(
            ts=str(payload["ts"]),
            message={"username": message.get("username"), **sent},
            channel=payload.get("channel") or channel,
        )

    async def update_message(
        self,
        state: ConversationState,
        attachments: list[dict[str, Any]],
    ) -> ConversationState:
        channel = state.channel or ""
        payload = self._call(
            "chat.update",
            {
                "token": self._access_token,
                "username": state.message.get("username", ""),
                "text": state.message.get("text", ""),
                "channel": channel,
                "attachments": json.dumps(attachments),
                "ts": state.ts,
            },
            channel,
        )
        message = payload.get("message") or {**state.message, "attachments": attachments}
        return ConversationState(
            ts=str(payload["ts"]),
            message=message,
            channel=payload.get("channel") or channel,
        )


class SlackWebhookTransport:
    """Webhook mode: one JSON POST per message, nothing to edit later."""

    supports_threads = False

    def __init__(self, webhook_url: str, timeout: float = 10) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    async def post_message(self, message: dict[str, Any]) -> Optional[ConversationState]:
        data = json.dumps(message).encode("utf-8")
        request = urllib.request.Request(self._webhook_url, data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        _send(request, message["channel"], self._timeout)
        return None

    async def update_message(
        self,
        state: ConversationState,
        attachments: list[dict[str, Any]],
    ) -> ConversationState:
        raise DeliveryFailure(state.channel or "", "incoming webhooks cannot edit messages")
