from __future__ import annotations
import asyncio
import os
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .model.catalog import PaymentCredentials

MOCK_SUCCESS_RATE = float(os.environ.get("MOCK_SUCCESS_RATE", "0.9"))
MOCK_LATENCY_SECONDS = float(os.environ.get("MOCK_LATENCY_SECONDS", "0"))


class GatewayUnavailable(Exception):
    """The charge request never reached the gateway; nothing was captured."""


# ----------------------------
# Payment Adapter Interface
# ----------------------------
@dataclass(frozen=True)
class ChargeRequest:
    transaction_id: str
    amount: float
    buyer_id: str
    manager_id: str
    credentials: PaymentCredentials


@dataclass(frozen=True)
class ChargeResult:
    succeeded: bool
    # gateway reference, set only on success
    reference: Optional[str] = None
    reason: Optional[str] = None


class PaymentGateway(ABC):
    # Must return a definitive outcome or raise GatewayUnavailable. Anything
    # slower than the caller's timeout is treated as unknown, not failed.
    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResult: ...


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentGateway):
    """Simulated gateway: approves `success_rate` of the charges."""

    def __init__(self, success_rate: float = MOCK_SUCCESS_RATE,
                 latency: float = MOCK_LATENCY_SECONDS,
                 rng: Optional[random.Random] = None) -> None:
        self.success_rate = success_rate
        self.latency = latency
        self.rng = rng or random.Random()

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        if not request.credentials.api_key or not request.credentials.api_token:
            raise GatewayUnavailable("missing gateway credentials")
        if self.latency > 0:
            await asyncio.sleep(self.latency)
        if self.rng.random() < self.success_rate:
            return ChargeResult(
                succeeded=True,
                reference=f"MP-{int(time.time() * 1000)}",
            )
        return ChargeResult(succeeded=False, reason="declined (simulation)")
