"""Application entry point for the forumcast relay."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from rich.console import Console
from rich.table import Table

import settings
from adapters.forum_mapper import post_from_payload
from adapters.forum_registry import HiddenCategoryPolicy, StaticCategoryRegistry, StaticTagRegistry
from adapters.slack_formatting import HtmlExcerptFormatter, format_channel
from adapters.slack_transport import SlackApiTransport, SlackWebhookTransport
from adapters.sqlite_storage import SQLiteKeyValueStore
from core.composer import MessageComposer
from core.config import ComposerConfig, DispatchConfig
from core.dispatcher import ConversationStore, Dispatcher
from core.errors import DeliveryFailure, TagNotFound
from core.filter_store import FilterStore
from core.matcher import Matcher
from core.models import FilterLevel, UNSET, parse_filter_level
from core.processor import NotificationProcessor
from core.rules_engine import FilterRuleEngine, RuleChange

NAME = "FORUMCAST"
FONT = "tarty-1"
ALL_CATEGORIES = "all"
TAG_PREFIX = "tag:"

LEVEL_CHOICES = [level.value for level in FilterLevel] + [UNSET]

console = Console()


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    # The access token ends up in request bodies, so it is always redacted.
    values = [settings.ACCESS_TOKEN, settings.WEBHOOK_URL]
    redact_cfg = config.get("redact", {}) if config else {}
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted({value for value in values if value}, key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/forumcast.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_transport():
    # Select the delivery adapter from configuration to keep the core
    # dispatcher independent from delivery details.
    if settings.ACCESS_TOKEN:
        return SlackApiTransport(settings.ACCESS_TOKEN)
    if settings.WEBHOOK_URL:
        return SlackWebhookTransport(settings.WEBHOOK_URL)
    raise RuntimeError("Set SLACK_ACCESS_TOKEN or SLACK_WEBHOOK_URL to deliver notifications")


class _Services:
    """Wires adapters into the core once per CLI invocation."""

    def __init__(self) -> None:
        kv = SQLiteKeyValueStore(settings.DB_PATH)
        kv.init_db()
        self.kv = kv
        self.categories = StaticCategoryRegistry(settings.CATEGORIES)
        self.filter_store = FilterStore(kv)
        self.rules = FilterRuleEngine(self.filter_store, StaticTagRegistry(settings.TAGS))

    def processor(self) -> NotificationProcessor:
        composer = MessageComposer(
            ComposerConfig(site_title=settings.SITE_TITLE, icon_url=settings.ICON_URL),
            self.categories,
            HtmlExcerptFormatter(settings.EXCERPT_LENGTH),
        )
        dispatcher = Dispatcher(
            composer=composer,
            transport=_build_transport(),
            conversations=ConversationStore(self.kv),
            config=DispatchConfig(
                freshness_minutes=settings.FRESHNESS_MINUTES,
                attachment_cap=settings.ATTACHMENT_CAP,
            ),
        )
        return NotificationProcessor(
            matcher=Matcher(self.filter_store),
            dispatcher=dispatcher,
            permissions=HiddenCategoryPolicy(settings.HIDDEN_CATEGORIES),
        )

    def scope_label(self, category_id: Optional[str]) -> str:
        if category_id is None:
            return "all categories"
        category = self.categories.get(category_id)
        return category.name if category else f"category {category_id}"


def _resolve_category(services: _Services, value: Optional[str]) -> Optional[str]:
    if value is None or value.lower() == ALL_CATEGORIES:
        return None
    category = services.categories.find(value)
    if category is None:
        raise SystemExit(f"Category not found: {value}")
    return category.id


def _report(change: RuleChange) -> None:
    if not change.changed:
        console.print("Nothing to change.")
        return
    for rule in change.removed:
        console.print(f"[red]-[/red] {rule.channel} {rule.filter.value} {', '.join(rule.tags or ())}")
    for rule in change.added:
        console.print(f"[green]+[/green] {rule.channel} {rule.filter.value} {', '.join(rule.tags or ())}")


def _cmd_subscribe(services: _Services, args: argparse.Namespace) -> None:
    level = parse_filter_level(args.level)
    if args.target.startswith(TAG_PREFIX):
        tag = args.target[len(TAG_PREFIX) :]
        category_id = _resolve_category(services, args.category)
        change = services.rules.set_tag_filter(args.channel, category_id, level, tag)
    else:
        category_id = _resolve_category(services, args.target)
        change = services.rules.set_category_filter(args.channel, category_id, level)
    _report(change)


def _cmd_add(services: _Services, args: argparse.Namespace) -> None:
    level = parse_filter_level(args.level)
    category_id = _resolve_category(services, args.category)
    _report(services.rules.add_filter(args.channel, category_id, level, args.tags))


def _cmd_remove(services: _Services, args: argparse.Namespace) -> None:
    category_id = _resolve_category(services, args.category)
    _report(services.rules.remove_filter(args.channel, category_id, args.tags))


def _rules_table(title: str) -> Table:
    table = Table(title=title)
    table.add_column("Channel")
    table.add_column("Scope")
    table.add_column("Filter")
    table.add_column("Tags")
    return table


def _cmd_list(services: _Services, args: argparse.Namespace) -> None:
    _print_banner()
    table = _rules_table("Subscriptions")
    for row in services.rules.list_filters():
        table.add_row(
            format_channel(row["channel"]),
            services.scope_label(row["category_id"]),
            row["filter"],
            ", ".join(row["tags"] or ()),
        )
    console.print(table)


def _cmd_status(services: _Services, args: argparse.Namespace) -> None:
    _print_banner()
    table = _rules_table(f"Subscriptions for {format_channel(args.channel)}")
    for category_id, rule in services.rules.status(args.channel):
        table.add_row(
            format_channel(rule.channel),
            services.scope_label(category_id),
            rule.filter.value,
            ", ".join(rule.tags or ()),
        )
    console.print(table)
    slugs = ", ".join(category.slug for category in services.categories.all())
    console.print(f"Available categories: {slugs or '(none)'}")


def _load_payloads(path: str) -> list[dict[str, Any]]:
    if path == "-":
        data = json.load(sys.stdin)
    else:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    return data if isinstance(data, list) else [data]


def _cmd_notify(services: _Services, args: argparse.Namespace) -> None:
    logger = logging.getLogger(__name__)
    processor = services.processor()

    async def _run_notify() -> None:
        for payload in _load_payloads(args.event):
            post = post_from_payload(payload, settings.BASE_URL)
            for outcome in await processor.handle(post):
                status = outcome.action if outcome.ok else f"failed ({outcome.error})"
                console.print(f"post {post.post_id} -> {outcome.channel}: {status}")

    asyncio.run(_run_notify())
    logger.info("Notify run complete")


def _cmd_test(services: _Services, args: argparse.Namespace) -> None:
    processor = services.processor()
    post = post_from_payload(_load_payloads(args.event)[0], settings.BASE_URL)
    outcome = asyncio.run(processor.send_test(post, args.channel))
    console.print(f"post {post.post_id} -> {outcome.channel}: {outcome.action}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="forumcast")
    subparsers = parser.add_subparsers(dest="command")

    subscribe = subparsers.add_parser(
        "subscribe",
        help="Set a channel's level for a category, all categories, or tag:<name>",
    )
    subscribe.add_argument("level", choices=LEVEL_CHOICES)
    subscribe.add_argument("target", help="category slug/id, 'all', or tag:<name>")
    subscribe.add_argument("--channel", required=True)
    subscribe.add_argument("--category", help="scope for tag subscriptions (default: all)")
    subscribe.set_defaults(handler=_cmd_subscribe)

    add = subparsers.add_parser("add", help="Add a filter rule")
    add.add_argument("--channel", required=True)
    add.add_argument("--level", required=True, choices=LEVEL_CHOICES)
    add.add_argument("--category", help="category slug/id (default: all)")
    add.add_argument("--tags", nargs="*", default=None)
    add.set_defaults(handler=_cmd_add)

    remove = subparsers.add_parser("remove", help="Remove a filter rule")
    remove.add_argument("--channel", required=True)
    remove.add_argument("--category", help="category slug/id (default: all)")
    remove.add_argument("--tags", nargs="*", default=None)
    remove.set_defaults(handler=_cmd_remove)

    listing = subparsers.add_parser("list", help="Show every subscription")
    listing.set_defaults(handler=_cmd_list)

    status = subparsers.add_parser("status", help="Show subscriptions for one channel")
    status.add_argument("--channel", required=True)
    status.set_defaults(handler=_cmd_status)

    notify = subparsers.add_parser("notify", help="Relay post payload(s) from a JSON file or '-'")
    notify.add_argument("event")
    notify.set_defaults(handler=_cmd_notify)

    test = subparsers.add_parser("test", help="Send a post to one channel, ignoring filters")
    test.add_argument("--channel", required=True)
    test.add_argument("event")
    test.set_defaults(handler=_cmd_test)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        _print_banner()
        parser.print_help()
        return

    _configure_logging()
    services = _Services()
    try:
        args.handler(services, args)
    except TagNotFound as exc:
        console.print(f"[red]Tag not found:[/red] {exc.tag}")
        raise SystemExit(1) from exc
    except DeliveryFailure as exc:
        console.print(f"[red]Delivery to {exc.channel} failed:[/red] {exc.reason}")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
