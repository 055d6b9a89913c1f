"""
Engagement batching queue - buffers likes/votes and flushes them into post counters

Producers write to a Redis hash keyed by "<type>:<target>:<actor>", so
repeated events collapse to one entry. The flusher takes a short-lived lock,
applies a batch inside one database transaction and only then deletes the
entries it applied. Counters are guarded by an EngagementApplied row per
key, which keeps a re-applied batch from counting twice.
"""
import json
import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Optional, Dict, Any, List, Tuple

import redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.models.post import Post, EngagementApplied, EngagementType
from ..exceptions import ValidationError, InfrastructureError
from .redis_cache import InMemoryKeyValueStore, scan_hash

logger = logging.getLogger(__name__)

PENDING_KEY = "engagement:pending"
FLUSH_LOCK_KEY = "engagement:flush_lock"

# Delete the lock only if we still own it
RELEASE_LOCK_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

COUNTER_COLUMNS = {
    EngagementType.LIKE.value: Post.like_count,
    EngagementType.VOTE.value: Post.vote_count,
}


def engagement_key(event_type: str, target_id: str, actor_id: str) -> str:
    return f"{event_type}:{target_id}:{actor_id}"


class FlushResult:
    """Outcome of one flush"""

    def __init__(
        self,
        lock_acquired: bool = True,
        drained: int = 0,
        applied: int = 0,
        duplicates: int = 0,
        discarded: int = 0,
        remaining: int = 0,
    ):
        self.lock_acquired = lock_acquired
        self.drained = drained
        self.applied = applied
        self.duplicates = duplicates
        self.discarded = discarded
        self.remaining = remaining

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lock_acquired": self.lock_acquired,
            "drained": self.drained,
            "applied": self.applied,
            "duplicates": self.duplicates,
            "discarded": self.discarded,
            "remaining": self.remaining,
        }


class EngagementQueue:
    """Buffer for like/vote events with an idempotent batch flush"""

    def __init__(self, db: Session, store, lock_ttl_ms: int = 30000):
        """
        Args:
            db: Database session used by flush()
            store: Redis client or InMemoryKeyValueStore
            lock_ttl_ms: Expiry of the flush lock in milliseconds
        """
        self.db = db
        self.store = store
        self.lock_ttl_ms = lock_ttl_ms

    def record(self, event_type: str, target_id: str, actor_id: str) -> str:
        """
        Buffer an engagement event

        Returns:
            The buffer key; repeated events for the same key overwrite each other

        Raises:
            ValidationError: unknown event type or missing ids
            InfrastructureError: buffer store unavailable
        """
        if event_type not in COUNTER_COLUMNS:
            raise ValidationError(
                f"Unknown engagement type: {event_type}",
                {"allowed": sorted(COUNTER_COLUMNS)},
            )
        if not target_id or not actor_id:
            raise ValidationError("target_id and actor_id are required")

        key = engagement_key(event_type, target_id, actor_id)
        value = json.dumps({
            "event_type": event_type,
            "target_id": target_id,
            "actor_id": actor_id,
            "timestamp": datetime.utcnow().isoformat(),
        })

        try:
            self.store.hset(PENDING_KEY, key, value)
        except redis.RedisError as e:
            logger.error(f"Failed to buffer engagement event {key}: {e}")
            raise InfrastructureError("Engagement buffer unavailable, please retry") from e

        return key

    def pending_count(self) -> int:
        try:
            return self.store.hlen(PENDING_KEY)
        except redis.RedisError as e:
            raise InfrastructureError("Engagement buffer unavailable") from e

    def flush(self, max_batch_size: int = 100) -> FlushResult:
        """
        Apply up to max_batch_size buffered events to post counters

        Returns immediately with lock_acquired=False when another flush is
        running. Entries are removed from the buffer only after the counter
        update has committed.

        Raises:
            ValidationError: max_batch_size < 1
            InfrastructureError: buffer store or database failure (entries stay buffered)
        """
        if max_batch_size < 1:
            raise ValidationError("max_batch_size must be at least 1", {"max_batch_size": max_batch_size})

        token = uuid.uuid4().hex
        try:
            acquired = self.store.set(FLUSH_LOCK_KEY, token, nx=True, px=self.lock_ttl_ms)
        except redis.RedisError as e:
            raise InfrastructureError("Engagement buffer unavailable") from e

        if not acquired:
            logger.info("Engagement flush already running elsewhere, skipping")
            return FlushResult(lock_acquired=False)

        try:
            return self._flush_locked(max_batch_size)
        finally:
            self._release_lock(token)

    def _flush_locked(self, max_batch_size: int) -> FlushResult:
        try:
            entries = scan_hash(self.store, PENDING_KEY, max_batch_size)
        except redis.RedisError as e:
            raise InfrastructureError("Engagement buffer unavailable") from e

        result = FlushResult(drained=len(entries))
        if not entries:
            return result

        events, malformed = self._parse_entries(entries)
        result.discarded = len(malformed)

        try:
            applied, duplicates = self._apply(events)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Engagement flush failed, {len(entries)} entries left buffered: {e}")
            raise InfrastructureError("Engagement counters could not be updated") from e

        result.applied = applied
        result.duplicates = duplicates

        try:
            self.store.hdel(PENDING_KEY, *entries.keys())
            result.remaining = self.store.hlen(PENDING_KEY)
        except redis.RedisError as e:
            # Committed already; the markers make the next flush of these entries a no-op
            logger.warning(f"Could not remove flushed engagement entries: {e}")

        logger.info(
            f"Engagement flush: drained={result.drained} applied={result.applied} "
            f"duplicates={result.duplicates} discarded={result.discarded} remaining={result.remaining}"
        )
        return result

    def _parse_entries(self, entries: Dict[str, str]) -> Tuple[List[Dict[str, str]], List[str]]:
        events = []
        malformed = []
        for key, raw in entries.items():
            try:
                event = json.loads(raw)
                if event["event_type"] not in COUNTER_COLUMNS or not event["target_id"] or not event["actor_id"]:
                    raise ValueError("incomplete event")
                events.append(event)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Discarding malformed engagement entry {key}: {e}")
                malformed.append(key)
        return events, malformed

    def _apply(self, events: List[Dict[str, str]]) -> Tuple[int, int]:
        increments: Counter = Counter()
        duplicates = 0

        for event in events:
            try:
                with self.db.begin_nested():
                    self.db.add(EngagementApplied(
                        event_type=event["event_type"],
                        target_id=event["target_id"],
                        actor_id=event["actor_id"],
                    ))
                    self.db.flush()
            except IntegrityError:
                duplicates += 1
                continue
            increments[(event["event_type"], event["target_id"])] += 1

        now = datetime.utcnow()
        for (event_type, target_id), count in increments.items():
            column = COUNTER_COLUMNS[event_type]
            updated = self.db.query(Post).filter(Post.id == target_id).update(
                {column: column + count, Post.updated_at: now},
                synchronize_session=False,
            )
            if updated == 0:
                logger.debug(f"Engagement target {target_id} not found, {count} {event_type}(s) dropped")

        return sum(increments.values()), duplicates

    def _release_lock(self, token: str) -> None:
        try:
            if isinstance(self.store, InMemoryKeyValueStore):
                self.store.compare_and_delete(FLUSH_LOCK_KEY, token)
            else:
                self.store.eval(RELEASE_LOCK_SCRIPT, 1, FLUSH_LOCK_KEY, token)
        except redis.RedisError as e:
            # The lock expires on its own
            logger.warning(f"Could not release engagement flush lock: {e}")
