#!/usr/bin/env python3
"""
Claim reconciliation sweep.

  DATABASE_URL=... python reconcile.py                 # one pass
  DATABASE_URL=... python reconcile.py --every 60      # loop
  DATABASE_URL=... python reconcile.py --older-than 300
"""
import argparse
import asyncio
import os

import redis.asyncio as redis
from loguru import logger

from wristpass.infra.log import setup_logging
from wristpass.infra.sql import open_database
from wristpass.model.pending import BACKEND as PENDING_BACKEND, new_index
from wristpass.reconcile import CLAIM_TTL_SECONDS, sweep


async def run(database_url: str, older_than: float, every: float) -> None:
    database = open_database(database_url)
    r = None
    if PENDING_BACKEND == "redis":
        r = redis.from_url(os.getenv("REDIS_URL", "redis://127.0.0.1:6379"),
                           decode_responses=True)
    try:
        while True:
            async with database.open() as db:
                pending = new_index(db=db, r=r)
                report = await sweep(db, pending,
                                     claim_ttl_seconds=older_than)
            logger.info("reconcile pass: {}", report.as_dict())
            if every <= 0:
                break
            await asyncio.sleep(every)
    finally:
        if r is not None:
            await r.aclose()
        await database.dispose()


def main():
    ap = argparse.ArgumentParser(description="Release stale ticket claims")
    ap.add_argument("--database-url",
                    default=os.environ.get("DATABASE_URL",
                                           "sqlite:///./wristpass.db"))
    ap.add_argument("--older-than", type=float, default=CLAIM_TTL_SECONDS,
                    help="Seconds a transaction may stay pending")
    ap.add_argument("--every", type=float, default=0.0,
                    help="Repeat every N seconds (0 = one pass)")
    args = ap.parse_args()

    setup_logging()
    try:
        asyncio.run(run(args.database_url, args.older_than, args.every))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
