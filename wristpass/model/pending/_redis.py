# model/pending/_redis.py
"""
Pending index kept in a Redis sorted set (score = created_at), so the sweep
and the admin view do not scan the ledger. The ledger stays authoritative:
the sweep re-checks every id with a conditional update.
"""
from __future__ import annotations
import time
from typing import Any, Dict, List, Tuple

import redis.asyncio as redis

PENDING_INDEX = "pending_transactions"


class PendingIndex:
    def __init__(self, *, r: redis.Redis) -> None:
        self.r = r

    async def add(self, transaction_id: str, created_at: float) -> None:
        await self.r.zadd(PENDING_INDEX, {transaction_id: float(created_at)})

    async def remove(self, transaction_id: str) -> None:
        await self.r.zrem(PENDING_INDEX, transaction_id)

    async def stale(self, cutoff: float, limit: int = 500) -> List[str]:
        # exclusive upper bound, matching created_at < cutoff
        return list(await self.r.zrangebyscore(
            PENDING_INDEX, "-inf", f"({cutoff}", start=0, num=limit
        ))

    async def recent(
        self, limit: int = 200
    ) -> Tuple[int, List[Dict[str, Any]]]:
        pipe = self.r.pipeline()
        pipe.zcard(PENDING_INDEX)
        pipe.zrevrange(PENDING_INDEX, 0, max(0, limit - 1), withscores=True)
        total, rows = await pipe.execute()
        now = time.time()
        items = [{
            "transaction_id": tx_id,
            "created_at": float(score),
            "age_ms": int(max(0.0, now - float(score)) * 1000),
        } for tx_id, score in rows]
        return int(total), items
