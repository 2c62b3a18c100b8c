# model/pending/__init__.py
import os
from typing import Optional

import redis.asyncio as redis

from ...infra.sql import GatedAsyncSession

BACKEND = os.getenv("PENDING_BACKEND", "pg").lower()  # 'pg' | 'redis'

if BACKEND == "redis":
    from ._redis import PendingIndex as _PendingIndex
else:
    from ._postgres import PendingIndex as _PendingIndex


# Factory keeps server.py simple and constructor-agnostic:
def new_index(*, db: Optional[GatedAsyncSession] = None,
              r: Optional[redis.Redis] = None):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("PendingIndex(redis) requires r=redis.Redis")
        return _PendingIndex(r=r)
    if db is None:
        raise RuntimeError("PendingIndex(pg) requires db=GatedAsyncSession")
    return _PendingIndex(db=db)


PendingIndex = _PendingIndex
__all__ = ["PendingIndex", "new_index", "BACKEND"]
