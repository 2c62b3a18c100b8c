# wristpass/infra/timings.py
"""
Per-operation latency samples (seconds), keyed by kind such as
"checkout.reserve" or "provision.units". Read via /api/admin/timings and
logged once on shutdown.
"""
from __future__ import annotations
import statistics
import time
from typing import Dict, List

from fastapi import FastAPI
from loguru import logger

_SAMPLES: Dict[str, List[float]] = {}


def record_timing(kind: str, seconds: float) -> None:
    _SAMPLES.setdefault(kind, []).append(float(seconds))


class timeit:
    """async usage:
        async with timeit("inventory.claim"):
            await fn()

    Failed operations are recorded as well.
    """
    __slots__ = ("_kind", "_started")

    def __init__(self, kind: str):
        self._kind = kind
        self._started = 0.0

    async def __aenter__(self):
        self._started = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, time.perf_counter() - self._started)


def _ms(seconds: float) -> float:
    return round(seconds * 1000, 3)


def snapshot() -> Dict[str, Dict[str, float]]:
    """Per kind: sample count, mean, std and max in milliseconds."""
    out: Dict[str, Dict[str, float]] = {}
    for kind, samples in sorted(_SAMPLES.items()):
        if not samples:
            continue
        out[kind] = {
            "n": len(samples),
            "mean_ms": _ms(statistics.fmean(samples)),
            "std_ms": _ms(statistics.stdev(samples))
            if len(samples) > 1 else 0.0,
            "max_ms": _ms(max(samples)),
        }
    return out


def reset() -> None:
    _SAMPLES.clear()


def install_shutdown_report(app: FastAPI) -> None:
    @app.on_event("shutdown")
    async def _report_on_shutdown():
        for kind, rec in snapshot().items():
            logger.bind(kind=kind, **rec).info("timing summary")
        reset()
