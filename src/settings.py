"""Static configuration for forumcast.

All user-editable settings (site presentation, categories, tags, dispatch
windows, logging) live in a single JSON file for quick edits without touching
Python. Secrets stay in the environment.
"""

import json
import os

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

# FORUMCAST_CONFIG lets several forums share one checkout.
CONFIG_PATH = os.getenv("FORUMCAST_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite key-value database.
DB_PATH = _CONFIG.get("db_path") or os.path.join(PROJECT_ROOT, "forumcast.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Presentation of outbound messages.
SITE_TITLE = _CONFIG.get("site_title", "Forum")
BASE_URL = _CONFIG.get("base_url", "")
ICON_URL = _CONFIG.get("icon_url") or None
EXCERPT_LENGTH = int(_CONFIG.get("excerpt_length", 400))

# Coalescing windows:
# - FRESHNESS_MINUTES: how long a sent message stays editable
# - ATTACHMENT_CAP: how many posts one message may collect
_dispatch = _CONFIG.get("dispatch", {})
FRESHNESS_MINUTES = int(_dispatch.get("freshness_minutes", 5))
ATTACHMENT_CAP = int(_dispatch.get("attachment_cap", 5))

# Forum lookups used when no live forum is attached.
CATEGORIES = _CONFIG.get("categories", [])
TAGS = _CONFIG.get("tags", [])
HIDDEN_CATEGORIES = _CONFIG.get("hidden_categories", [])

# Delivery mode: a token enables edits, otherwise the webhook is used.
ACCESS_TOKEN = os.getenv("SLACK_ACCESS_TOKEN", "")
WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL", "")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
