"""
Configuration - Settings read from the environment.

    CARDSYNC_ENV                 development | production (default development)
    CARDSYNC_REDIS_URL           redis://... to share rooms through Redis;
                                 unset means in-memory store and channel
    CARDSYNC_LAST_CARD_WINDOW    seconds to declare the last card (default 5)
    CARDSYNC_INTENT_TIMEOUT      seconds a peer waits for a reply (default 5)
    CARDSYNC_POLL_INTERVAL       seconds between peer polls (default 2)
    CARDSYNC_TICK_INTERVAL       seconds between host declaration sweeps (default 1)
    ALLOWED_ORIGINS              comma separated CORS origins (default *)
"""

from __future__ import annotations
from dataclasses import dataclass, field
import os


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    env: str = "development"
    redis_url: str | None = None
    last_card_window: float = 5.0
    intent_timeout: float = 5.0
    poll_interval: float = 2.0
    tick_interval: float = 1.0
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls) -> Settings:
        origins = os.getenv("ALLOWED_ORIGINS", "*")
        return cls(
            env=os.getenv("CARDSYNC_ENV", "development"),
            redis_url=os.getenv("CARDSYNC_REDIS_URL") or None,
            last_card_window=_float_env("CARDSYNC_LAST_CARD_WINDOW", 5.0),
            intent_timeout=_float_env("CARDSYNC_INTENT_TIMEOUT", 5.0),
            poll_interval=_float_env("CARDSYNC_POLL_INTERVAL", 2.0),
            tick_interval=_float_env("CARDSYNC_TICK_INTERVAL", 1.0),
            allowed_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
