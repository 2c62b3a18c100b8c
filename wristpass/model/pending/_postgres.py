# model/pending/_postgres.py
"""
Pending index read straight from the ledger: the receivables table already
knows which transactions are pending, so add/remove are no-ops.
"""
from __future__ import annotations
import time
from typing import Any, Dict, List, Tuple

from ...infra.sql import GatedAsyncSession
from .. import ledger


class PendingIndex:
    def __init__(self, *, db: GatedAsyncSession) -> None:
        self.db = db

    async def add(self, transaction_id: str, created_at: float) -> None:
        return None

    async def remove(self, transaction_id: str) -> None:
        return None

    async def stale(self, cutoff: float, limit: int = 500) -> List[str]:
        return await ledger.list_stale_pending(self.db, cutoff, limit=limit)

    async def recent(
        self, limit: int = 200
    ) -> Tuple[int, List[Dict[str, Any]]]:
        total = await ledger.count_pending(self.db)
        rows = await ledger.list_pending(self.db, limit=limit)
        now = time.time()
        items = [{
            "transaction_id": r["transaction_id"],
            "created_at": float(r["created_at"]),
            "age_ms": int(max(0.0, now - float(r["created_at"])) * 1000),
        } for r in rows]
        return total, items
