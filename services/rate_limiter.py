from __future__ import annotations

import random
import time
from collections import deque
from threading import Lock

from flask import request


class SlidingWindowRateLimiter:
    """Janela deslizante por chave (em memória, por processo).

    Chaves sem requisições recentes são descartadas de forma probabilística
    (~1% das chamadas) para o dicionário não crescer sem limite.
    """

    def __init__(self, *, cleanup_probability: float = 0.01) -> None:
        self._lock = Lock()
        self._buckets: dict[str, deque[float]] = {}
        self.cleanup_probability = cleanup_probability

    def check(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int | None]:
        if limit <= 0 or window_seconds <= 0:
            return True, None

        now = time.time()
        cutoff = now - window_seconds
        with self._lock:
            if random.random() < self.cleanup_probability:
                self._evict_stale(cutoff)

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = deque()
                self._buckets[key] = bucket

            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= limit:
                retry = int(window_seconds - (now - bucket[0])) if bucket else window_seconds
                return False, max(retry, 1)

            bucket.append(now)
            return True, None

    def _evict_stale(self, cutoff: float) -> None:
        stale = [k for k, bucket in self._buckets.items() if not bucket or bucket[-1] <= cutoff]
        for k in stale:
            del self._buckets[k]

    def __len__(self) -> int:
        return len(self._buckets)


def client_ip() -> str:
    """IP do cliente: X-Forwarded-For, X-Real-IP e por fim o socket.

    Endereços IPv4 mapeados em IPv6 (::ffff:a.b.c.d) são reduzidos ao IPv4.
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = (request.headers.get("X-Real-IP") or "").strip() or (request.remote_addr or "")
    if ip.lower().startswith("::ffff:"):
        ip = ip[7:]
    return ip or "unknown"
