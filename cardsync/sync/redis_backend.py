"""
Redis Bindings - Record store and message channel on a shared Redis.

Layout:
    cardsync:record:<record_id>    JSON document of the Record
    cardsync:code:<code>           record id for a room code
    cardsync:record:<record_id>    (pub/sub) JSON record after every write
    cardsync:channel:<topic>       (pub/sub) intents and replies

compare_and_set and claim_seat use optimistic transactions
(WATCH / MULTI / EXEC): a WatchError means another writer got in first.
Any other Redis failure surfaces as StoreUnavailable or ChannelFailure.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Callable
import json
import logging
import time

import redis

from ..engine_core.state import GameStatus
from .channel import MessageChannel, MessageHandler
from .errors import (
    ChannelFailure, RecordExists, RecordNotFound, StoreUnavailable, VersionConflict,
)
from .record_store import (
    Record, RecordCallback, RecordStore, Seat, check_seat_claim, lowest_free_index,
)

logger = logging.getLogger(__name__)

KEY_PREFIX = "cardsync"
SEAT_CLAIM_ATTEMPTS = 5


def connect(url: str) -> redis.Redis:
    """Client with string responses, shared by the store and the channel."""
    return redis.Redis.from_url(url, decode_responses=True)


@contextmanager
def _store_errors():
    try:
        yield
    except redis.exceptions.WatchError:
        raise
    except redis.exceptions.RedisError as e:
        raise StoreUnavailable(f"Redis error: {e}") from e


class _Subscription:
    """One pub/sub connection with its listener thread."""

    def __init__(self, client: redis.Redis, channel: str, on_data: Callable[[str], None], sleep_time: float):
        self.pubsub = client.pubsub(ignore_subscribe_messages=True)

        def handle(message):
            try:
                on_data(message["data"])
            except Exception:
                logger.exception("Subscriber for %s failed", channel)

        self.pubsub.subscribe(**{channel: handle})
        self.thread = self.pubsub.run_in_thread(sleep_time=sleep_time, daemon=True)

    def stop(self):
        self.thread.stop()
        self.pubsub.close()


class RedisRecordStore(RecordStore):
    """Record store shared by every participant process through Redis."""

    def __init__(self, client: redis.Redis, sleep_time: float = 0.01):
        self.client = client
        self.sleep_time = sleep_time

    def _key(self, record_id: str) -> str:
        return f"{KEY_PREFIX}:record:{record_id}"

    def _code_key(self, code: str) -> str:
        return f"{KEY_PREFIX}:code:{code}"

    @staticmethod
    def _dump(record: Record) -> str:
        return json.dumps(record.to_dict())

    @staticmethod
    def _load(raw: str) -> Record:
        return Record.from_dict(json.loads(raw))

    def create(self, record: Record) -> Record:
        stored = record.copy()
        if not stored.created_at:
            stored.created_at = time.time()
        with _store_errors():
            if not self.client.set(self._code_key(stored.code), stored.record_id, nx=True):
                raise RecordExists(f"Room code {stored.code} already in use")
            if not self.client.set(self._key(stored.record_id), self._dump(stored), nx=True):
                self.client.delete(self._code_key(stored.code))
                raise RecordExists(f"Record {stored.record_id} already exists")
        return stored

    def read(self, record_id: str) -> Record | None:
        with _store_errors():
            raw = self.client.get(self._key(record_id))
        return self._load(raw) if raw else None

    def find_by_code(self, code: str) -> Record | None:
        with _store_errors():
            record_id = self.client.get(self._code_key(code))
        if not record_id:
            return None
        return self.read(record_id)

    def compare_and_set(
        self,
        record_id: str,
        expected_version: int,
        game_state: dict[str, Any] | None,
        status: GameStatus,
    ) -> Record:
        key = self._key(record_id)
        with _store_errors():
            with self.client.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    raw = pipe.get(key)
                    if raw is None:
                        pipe.unwatch()
                        raise RecordNotFound(f"Record {record_id} not found")
                    record = self._load(raw)
                    if record.version != expected_version:
                        pipe.unwatch()
                        raise VersionConflict(record_id, expected_version, record.version)

                    record.version = expected_version + 1
                    record.game_state = game_state
                    record.status = status
                    payload = self._dump(record)

                    pipe.multi()
                    pipe.set(key, payload)
                    pipe.publish(key, payload)
                    pipe.execute()
                except redis.exceptions.WatchError:
                    current = self.read(record_id)
                    raise VersionConflict(
                        record_id, expected_version, current.version if current else expected_version,
                    )
        return self._load(payload)

    def claim_seat(self, record_id: str, user_id: str, display_name: str) -> Seat:
        key = self._key(record_id)
        for _ in range(SEAT_CLAIM_ATTEMPTS):
            with _store_errors():
                with self.client.pipeline() as pipe:
                    try:
                        pipe.watch(key)
                        raw = pipe.get(key)
                        if raw is None:
                            pipe.unwatch()
                            raise RecordNotFound(f"Record {record_id} not found")
                        record = self._load(raw)
                        existing = check_seat_claim(record, user_id)
                        if existing:
                            pipe.unwatch()
                            return existing

                        seat = Seat(
                            user_id=user_id,
                            display_name=display_name,
                            player_index=lowest_free_index(record.seats),
                            joined_at=time.time(),
                        )
                        record.seats.append(seat)
                        record.seats.sort(key=lambda s: s.player_index)
                        payload = self._dump(record)

                        pipe.multi()
                        pipe.set(key, payload)
                        pipe.publish(key, payload)
                        pipe.execute()
                        return seat
                    except redis.exceptions.WatchError:
                        logger.info("Seat claim on %s raced; retrying", record_id)
        raise StoreUnavailable(f"Could not claim a seat in {record_id}: too much contention")

    def subscribe(self, record_id: str, callback: RecordCallback) -> Callable[[], None]:
        def on_data(data: str):
            callback(self._load(data))

        with _store_errors():
            subscription = _Subscription(self.client, self._key(record_id), on_data, self.sleep_time)
        return subscription.stop


class RedisChannel(MessageChannel):
    """Message channel over Redis pub/sub."""

    def __init__(self, client: redis.Redis, sleep_time: float = 0.01):
        self.client = client
        self.sleep_time = sleep_time
        self._subscriptions: list[_Subscription] = []

    def _channel(self, topic: str) -> str:
        return f"{KEY_PREFIX}:channel:{topic}"

    def publish(self, topic: str, message: dict[str, Any]):
        try:
            self.client.publish(self._channel(topic), json.dumps(message))
        except redis.exceptions.RedisError as e:
            raise ChannelFailure(f"Publish to {topic} failed: {e}") from e

    def subscribe(self, topic: str, handler: MessageHandler) -> Callable[[], None]:
        def on_data(data: str):
            handler(json.loads(data))

        try:
            subscription = _Subscription(self.client, self._channel(topic), on_data, self.sleep_time)
        except redis.exceptions.RedisError as e:
            raise ChannelFailure(f"Subscribe to {topic} failed: {e}") from e
        self._subscriptions.append(subscription)

        def unsubscribe():
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
                subscription.stop()

        return unsubscribe

    def close(self):
        for subscription in self._subscriptions:
            subscription.stop()
        self._subscriptions.clear()
