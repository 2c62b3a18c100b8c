#!/usr/bin/env python3
"""
Wristpass load client (async)

Many buyers race for the same wristband:
  1) GET  /api/events/{event}/ticket-types       -> units available before
  2) POST /functions/process-ticket-purchase     (N buyers, concurrently)
  3) GET  /api/events/{event}/ticket-types       -> units available after

and checks that no unit was sold twice: tickets assigned never exceed the
units that were available, and every unit that left the pool is accounted
for by a paid or pending purchase.

Usage:
  python -m wristpass.load_client --base http://localhost:8000 \
      --event <event id> --ticket-type <id> --price 250 \
      --tokens buyer1,buyer2,buyer3 --total 200 --concurrency 50

Notes:
- The server must accept the buyer tokens (AUTH_BACKEND=static with
  AUTH_STATIC_TOKENS=buyer1=u1,buyer2=u2,...).
- A higher MOCK_SUCCESS_RATE makes the sold-out edge easier to reach.
"""

import argparse
import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

OUTCOMES = {
    200: "PAID",
    202: "PENDING",
    402: "FAILED",
    409: "SOLD_OUT",
}


@dataclass
class Result:
    outcome: str  # PAID/PENDING/FAILED/SOLD_OUT/ERROR
    tickets: int = 0
    t_total: float = 0.0
    err: Optional[str] = None


@dataclass
class Stats:
    results: List[Result] = field(default_factory=list)

    def add(self, r: Result):
        self.results.append(r)

    def count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def summary(self) -> Dict[str, float]:
        lat = [r.t_total for r in self.results if r.outcome != "ERROR"]

        def pct(p):
            if not lat:
                return 0.0
            x = sorted(lat)
            k = int(max(0, min(len(x)-1, round(p/100*(len(x)-1)))))
            return x[k]
        return {
            "total": len(self.results),
            "paid": self.count("PAID"),
            "pending": self.count("PENDING"),
            "failed": self.count("FAILED"),
            "sold_out": self.count("SOLD_OUT"),
            "error": self.count("ERROR"),
            "tickets": sum(r.tickets for r in self.results),
            "p50_s": pct(50),
            "p90_s": pct(90),
            "p99_s": pct(99),
            "avg_s": (sum(lat)/len(lat)) if lat else 0.0,
        }

    def print(self, elapsed_s: float):
        s = self.summary()
        print("\n=== Load Summary ===")
        print(
            f"Total: {int(s['total'])}   PAID: {int(s['paid'])}   "
            f"PENDING: {int(s['pending'])}   FAILED: {int(s['failed'])}   "
            f"SOLD_OUT: {int(s['sold_out'])}   ERROR: {int(s['error'])}"
        )
        print(
            f"Latency (purchase round trip): "
            f"avg {s['avg_s']:.3f}s   p50 {s['p50_s']:.3f}s   "
            f"p90 {s['p90_s']:.3f}s   p99 {s['p99_s']:.3f}s"
        )
        print(
            f"Wall time: {elapsed_s:.3f}s   "
            f"Throughput: {s['total']/elapsed_s:.1f} ops/s"
        )
        errors = [r.err for r in self.results if r.err]
        for e in errors[:5]:
            print(f"  error: {e}")


async def available_units(
    client: httpx.AsyncClient, base: str, event_id: str, ticket_type_id: str
) -> int:
    resp = await client.get(f"{base}/api/events/{event_id}/ticket-types",
                            timeout=10.0)
    resp.raise_for_status()
    for item in resp.json()["items"]:
        if item["ticket_type_id"] == ticket_type_id:
            return int(item["available"])
    return 0


async def one_purchase(
    client: httpx.AsyncClient,
    base: str,
    token: str,
    event_id: str,
    ticket_type_id: str,
    price: float,
    quantity: int,
) -> Result:
    t0 = time.perf_counter()
    try:
        resp = await client.post(
            f"{base}/functions/process-ticket-purchase",
            json={
                "eventId": event_id,
                "purchaseItems": [{
                    "ticketTypeId": ticket_type_id,
                    "quantity": quantity,
                    "price": price,
                }],
            },
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
    except Exception as e:
        return Result(outcome="ERROR", err=f"purchase: {e}")

    r = Result(outcome=OUTCOMES.get(resp.status_code, "ERROR"),
               t_total=time.perf_counter() - t0)
    if r.outcome == "PAID":
        r.tickets = int(resp.json().get("ticketsAssigned", 0))
    elif r.outcome == "ERROR":
        r.err = f"HTTP {resp.status_code}: {resp.text[:200]}"
    return r


async def run_load(
    base: str,
    event_id: str,
    ticket_type_id: str,
    price: float,
    quantity: int,
    tokens: List[str],
    total: int,
    concurrency: int,
) -> tuple:
    sem = asyncio.Semaphore(concurrency)
    stats = Stats()
    token_cycle = itertools.cycle(tokens)

    limits = httpx.Limits(
        max_keepalive_connections=concurrency, max_connections=concurrency
    )
    async with httpx.AsyncClient(
        limits=limits, headers={"User-Agent": "WristpassLoad/1.0"}
    ) as client:
        before = await available_units(client, base, event_id,
                                       ticket_type_id)

        async def worker(token: str):
            async with sem:
                res = await one_purchase(
                    client, base, token, event_id, ticket_type_id,
                    price, quantity,
                )
                stats.add(res)

        tasks = [asyncio.create_task(worker(next(token_cycle)))
                 for _ in range(total)]
        await asyncio.gather(*tasks)

        after = await available_units(client, base, event_id, ticket_type_id)

    return stats, before, after


def check_no_double_sale(stats: Stats, before: int, after: int,
                         quantity: int) -> bool:
    s = stats.summary()
    sold = int(s["tickets"])
    held = int(s["pending"]) * quantity
    ok = True
    if sold > before:
        print(f"❌ sold {sold} tickets but only {before} were available")
        ok = False
    # failed purchases keep their claim until the sweep runs
    taken = before - after
    if taken < sold + held:
        print(f"❌ {sold + held} units paid or pending, "
              f"but only {taken} left the pool")
        ok = False
    if ok:
        print(f"✅ no double sale: {before} available, {sold} sold, "
              f"{held} pending, {after} left")
    return ok


def main():
    ap = argparse.ArgumentParser(description="Wristpass load client")
    ap.add_argument("--base", default="http://localhost:8000",
                    help="Base URL of the app")
    ap.add_argument("--event", required=True, help="Event id")
    ap.add_argument("--ticket-type", required=True, help="Wristband id")
    ap.add_argument("--price", type=float, required=True,
                    help="Current unit price of the wristband")
    ap.add_argument("--quantity", type=int, default=1,
                    help="Tickets per purchase")
    ap.add_argument("--tokens", required=True,
                    help="Comma separated buyer bearer tokens")
    ap.add_argument("--total", type=int, default=100,
                    help="Total purchases to run")
    ap.add_argument("--concurrency", type=int, default=20,
                    help="Concurrent workers")
    args = ap.parse_args()

    tokens = [t.strip() for t in args.tokens.split(",") if t.strip()]
    if not tokens:
        ap.error("--tokens must name at least one token")

    t_start = time.perf_counter()
    stats, before, after = asyncio.run(run_load(
        base=args.base,
        event_id=args.event,
        ticket_type_id=args.ticket_type,
        price=args.price,
        quantity=args.quantity,
        tokens=tokens,
        total=args.total,
        concurrency=args.concurrency,
    ))
    elapsed = time.perf_counter() - t_start
    stats.print(elapsed)
    if not check_no_double_sale(stats, before, after, args.quantity):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
