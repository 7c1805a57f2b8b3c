"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DispatchConfig:
    """Coalescing settings for the dispatcher."""

    freshness_minutes: int = 5
    attachment_cap: int = 5


@dataclass(frozen=True)
class ComposerConfig:
    """Message presentation settings consumed by the composer."""

    site_title: str
    icon_url: Optional[str] = None
