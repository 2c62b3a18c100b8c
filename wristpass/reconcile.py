# wristpass/reconcile.py
"""
Claim reconciliation.

A claim is held by a pending transaction until settlement answers. When the
gateway never answers, or the buyer's request dies mid-flight, the units stay
'reserved'. The sweep:

  1. fails every transaction still pending after the claim TTL and releases
     its units (one conditional update each, so a late settlement wins);
  2. releases units still reserved by transactions that are already failed.
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from .helpers import now_ts
from .infra.sql import GatedAsyncSession
from .infra.timings import timeit
from .model import ledger

CLAIM_TTL_SECONDS = int(os.environ.get("CLAIM_TTL_SECONDS", "900"))
SWEEP_LIMIT = 500


@dataclass
class SweepReport:
    expired: List[str] = field(default_factory=list)
    units_released: int = 0

    def as_dict(self) -> dict:
        return {
            "expired": len(self.expired),
            "expired_ids": list(self.expired),
            "units_released": self.units_released,
        }


async def sweep(
    db: GatedAsyncSession,
    pending,
    *,
    now: Optional[float] = None,
    claim_ttl_seconds: float = CLAIM_TTL_SECONDS,
    limit: int = SWEEP_LIMIT,
) -> SweepReport:
    now = now_ts() if now is None else now
    cutoff = now - claim_ttl_seconds
    report = SweepReport()

    async with timeit("reconcile.sweep"):
        # the index may miss a claim whose index write failed; the ledger
        # is authoritative, so its stale rows are swept as well
        stale = dict.fromkeys(await pending.stale(cutoff, limit=limit))
        stale.update(dict.fromkeys(
            await ledger.list_stale_pending(db, cutoff, limit=limit)
        ))
        for tx_id in stale:
            released = await ledger.expire_and_release(db, tx_id)
            # settled meanwhile, or expired: either way no longer pending
            await pending.remove(tx_id)
            if released is None:
                continue
            report.expired.append(tx_id)
            report.units_released += released
            logger.bind(transaction_id=tx_id).info(
                "expired stale claim, released {} units", released
            )

        for tx_id in await ledger.list_failed_with_claims(db, limit=limit):
            released = await ledger.release_failed(db, tx_id)
            report.units_released += released
            if released:
                logger.bind(transaction_id=tx_id).info(
                    "released {} units of failed transaction", released
                )

    if report.expired or report.units_released:
        logger.info("sweep: {} expired, {} units released",
                    len(report.expired), report.units_released)
    return report
