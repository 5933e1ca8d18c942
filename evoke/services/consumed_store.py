import threading
from datetime import datetime, timezone

import redis
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..models import db, Redemption

# Backends for the set of redeemed ticket ids. Each one offers an atomic
# insert-if-absent; that single call is the whole redeem critical section.


class ConsumedStore:
    def insert_if_absent(self, ticket_id: str) -> bool:
        """Add ``ticket_id``; True if it was absent, False if already present."""
        raise NotImplementedError

    def contains(self, ticket_id: str) -> bool:
        raise NotImplementedError


class MemoryConsumedStore(ConsumedStore):
    """Single-process store. Good for one scanning device or tests."""

    def __init__(self):
        self._ids = set()
        self._lock = threading.Lock()

    def insert_if_absent(self, ticket_id):
        with self._lock:
            if ticket_id in self._ids:
                return False
            self._ids.add(ticket_id)
            return True

    def contains(self, ticket_id):
        with self._lock:
            return ticket_id in self._ids

    def __len__(self):
        with self._lock:
            return len(self._ids)


class RedisConsumedStore(ConsumedStore):
    """Shared store for several gates; relies on ``SET NX``."""

    def __init__(self, client, prefix: str = 'consumed:', ttl: int | None = None):
        self._r = client
        self._prefix = prefix
        self._ttl = ttl

    def _key(self, ticket_id):
        return f"{self._prefix}{ticket_id}"

    def insert_if_absent(self, ticket_id):
        now = datetime.now(timezone.utc).isoformat()
        return bool(self._r.set(self._key(ticket_id), now, nx=True, ex=self._ttl))

    def contains(self, ticket_id):
        return self._r.exists(self._key(ticket_id)) == 1


class SqlConsumedStore(ConsumedStore):
    """Shared store on the app database; the unique ticket_id column arbitrates races."""

    def insert_if_absent(self, ticket_id):
        db.session.add(Redemption(ticket_id=ticket_id))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return False
        return True

    def contains(self, ticket_id):
        return db.session.query(Redemption.id).filter_by(ticket_id=ticket_id).first() is not None


def build_store(config) -> ConsumedStore:
    kind = (config.get('CONSUMED_STORE') or 'sql').lower()
    if kind == 'memory':
        return MemoryConsumedStore()
    if kind == 'sql':
        return SqlConsumedStore()
    if kind == 'redis':
        url = config.get('REDIS_URL')
        ttl = config.get('CONSUMED_TTL')
        try:
            client = redis.from_url(url, decode_responses=True)
            client.ping()
        except redis.RedisError as e:
            current_app.logger.warning('redis unavailable at %s (%s); redeemed tickets kept in memory', url, e)
            return MemoryConsumedStore()
        return RedisConsumedStore(client, ttl=int(ttl) if ttl else None)
    raise ValueError(f'unknown CONSUMED_STORE: {kind}')
