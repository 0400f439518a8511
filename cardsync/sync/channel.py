"""
Message Channel - Low-latency broadcast between participant processes.

Carries intents from participants to the host and replies from the host
back. Delivery is at-least-once: duplicates are possible and are made
harmless by the host's version guard, so no ordering or exactly-once
guarantee is assumed.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Callable
import logging
import threading

from .errors import ChannelFailure

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]


class MessageChannel(ABC):
    """Interface every channel binding implements."""

    @abstractmethod
    def publish(self, topic: str, message: dict[str, Any]):
        """Send a message to every subscriber of `topic`. Raises ChannelFailure."""

    @abstractmethod
    def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], None]:
        """Register a handler; returns an unsubscribe function."""

    def close(self):
        """Release transport resources."""


class InMemoryChannel(MessageChannel):
    """
    Synchronous in-process channel.

    Handlers run on the publisher's thread before publish() returns.
    Knobs for exercising failure paths:
    - duplicate_delivery: every message is delivered twice
    - dropping: messages are accepted and silently lost
    - connected: when False, publish raises ChannelFailure
    """

    def __init__(self, duplicate_delivery: bool = False):
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._lock = threading.Lock()
        self.duplicate_delivery = duplicate_delivery
        self.dropping = False
        self.connected = True
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, topic: str, message: dict[str, Any]):
        if not self.connected:
            raise ChannelFailure(f"Channel disconnected; cannot publish to {topic}")
        self.published.append((topic, deepcopy(message)))
        if self.dropping:
            return

        with self._lock:
            handlers = list(self._handlers.get(topic, []))

        deliveries = 2 if self.duplicate_delivery else 1
        for _ in range(deliveries):
            for handler in handlers:
                try:
                    handler(deepcopy(message))
                except Exception:
                    logger.exception("Channel handler for %s failed", topic)

    def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(topic, []).append(handler)

        def unsubscribe():
            with self._lock:
                handlers = self._handlers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe
