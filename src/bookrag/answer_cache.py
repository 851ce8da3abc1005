"""
Answer cache keyed by (document id, normalized question).

Entries carry a TTL. The cache never fails a request: read errors count as a
miss and write errors are logged and dropped.
"""
from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Callable

import redis

from .config import CacheBackend, Settings
from .models import Answer
from .observability import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "bookrag:answer:"


def normalize_question(question: str) -> str:
    return str(question or "").strip().lower()


def cache_key(document_id: str, question: str) -> str:
    digest = hashlib.sha256(f"{document_id}\x1f{normalize_question(question)}".encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}{digest}"


class RedisCacheStore:
    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str, socket_timeout_s: float = 2.0) -> "RedisCacheStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout_s,
            socket_connect_timeout=socket_timeout_s,
        )
        return cls(client)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int):
        self._client.set(key, value, ex=int(ttl_seconds))

    def close(self):
        self._client.close()


class InMemoryCacheStore:
    """Thread-safe LRU with per-entry expiry."""

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._max = max(1, int(max_entries))
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: str, ttl_seconds: int):
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self._max:
                self._entries.popitem(last=False)
            self._entries[key] = (self._clock() + float(ttl_seconds), value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def close(self):
        with self._lock:
            self._entries.clear()


def create_cache_store(settings: Settings):
    if settings.cache_backend == CacheBackend.MEMORY:
        return InMemoryCacheStore(max_entries=settings.cache_max_entries)
    return RedisCacheStore.from_url(settings.redis_url, socket_timeout_s=settings.cache_socket_timeout_s)


class AnswerCache:
    def __init__(self, store, *, ttl_s: int = 86400):
        self.store = store
        self.ttl_s = int(ttl_s)

    def get(self, document_id: str, question: str) -> Answer | None:
        key = cache_key(document_id, question)
        try:
            raw = self.store.get(key)
        except Exception as exc:
            logger.warning("answer_cache_read_failed", document_id=document_id, error=str(exc))
            return None
        if not raw:
            logger.debug("answer_cache_miss", document_id=document_id)
            return None
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("answer_cache_corrupt_entry", document_id=document_id)
            return None
        logger.info("answer_cache_hit", document_id=document_id)
        return Answer(
            answer=str(data.get("answer", "")),
            source="cache",
            contexts=[str(ctx) for ctx in data.get("contexts") or []],
        )

    def set(self, document_id: str, question: str, answer: Answer, ttl: int | None = None):
        if answer.source == "error":
            return
        key = cache_key(document_id, question)
        try:
            self.store.set(key, json.dumps(answer.to_cache_value()), int(ttl or self.ttl_s))
        except Exception as exc:
            logger.warning("answer_cache_write_failed", document_id=document_id, error=str(exc))
