import asyncio

import pytest

from wristpass import checkout
from wristpass.checkout import PurchaseItem
from wristpass.errors import (
    AssignmentFailedError, InsufficientInventoryError, NotFoundError,
    PaymentFailedError, PaymentNotConfiguredError, ValidationFailedError,
)
from wristpass.model import inventory
from wristpass.model.db import (
    TX_FAILED, TX_PAID, TX_PENDING, U_ACTIVE, U_RESERVED, U_USED
)
from wristpass.model.pending._postgres import PendingIndex

from .helpers import (
    BUYER_ID, OTHER_BUYER_ID, ScriptedGateway, count_by, make_ticket_type,
    transactions, units_of,
)


async def _buy(db, gateway, cat, items, buyer_id=BUYER_ID, timeout=1.0):
    return await checkout.process_purchase(
        db, PendingIndex(db=db), gateway,
        buyer_id=buyer_id, event_id=cat.event_id, items=items,
        payment_timeout=timeout,
    )


class TestValidateItems:
    def test_empty(self):
        with pytest.raises(ValidationFailedError):
            checkout.validate_items([])

    def test_duplicate_ticket_type(self):
        items = [PurchaseItem("a", 1, 10.0), PurchaseItem("a", 2, 10.0)]
        with pytest.raises(ValidationFailedError, match="twice"):
            checkout.validate_items(items)

    def test_zero_quantity(self):
        with pytest.raises(ValidationFailedError):
            checkout.validate_items([PurchaseItem("a", 0, 10.0)])

    def test_order_total_is_rounded(self):
        items = [PurchaseItem("a", 3, 33.333), PurchaseItem("b", 1, 0.1)]
        assert checkout.order_total(items) == 100.1


class TestPurchase:
    async def test_success_assigns_units(self, db, catalog, gateway):
        tt = await make_ticket_type(db, catalog, quantity=5, price=100.0)

        result = await _buy(db, gateway, catalog, [PurchaseItem(tt, 2, 100.0)])
        assert result.status == TX_PAID
        assert result.tickets_assigned == 2
        assert gateway.calls[0].amount == 200.0

        units = await units_of(db, tt)
        assert count_by(units) == {U_USED: 2, U_ACTIVE: 3}
        (tx,) = await transactions(db)
        assert tx["status"] == TX_PAID
        assert tx["total_value"] == 200.0
        assert sorted(tx["wristband_analytics_ids"]) == sorted(
            u["id"] for u in units if u["status"] == U_USED
        )

    async def test_vip_two_buyers_then_sold_out(self, new_db, catalog):
        # VIP x2 at 100: two concurrent buyers get one each
        async with new_db() as db:
            tt = await make_ticket_type(db, catalog, quantity=2, price=100.0)
        gateway = ScriptedGateway()

        async def buyer(buyer_id):
            async with new_db() as db:
                return await _buy(db, gateway, catalog,
                                  [PurchaseItem(tt, 1, 100.0)],
                                  buyer_id=buyer_id)

        results = await asyncio.gather(buyer(BUYER_ID), buyer(OTHER_BUYER_ID))
        assert [r.status for r in results] == [TX_PAID, TX_PAID]

        async with new_db() as db:
            units = await units_of(db, tt)
            assert count_by(units) == {U_USED: 2}
            assert {u["client_user_id"] for u in units} == {
                BUYER_ID, OTHER_BUYER_ID
            }

            with pytest.raises(InsufficientInventoryError):
                await _buy(db, gateway, catalog, [PurchaseItem(tt, 1, 100.0)])
            assert len(await transactions(db)) == 2

    async def test_no_double_sale_under_contention(self, new_db, catalog):
        async with new_db() as db:
            tt = await make_ticket_type(db, catalog, quantity=3, price=10.0)
        gateway = ScriptedGateway()

        async def buyer(n):
            async with new_db() as db:
                try:
                    return await _buy(db, gateway, catalog,
                                      [PurchaseItem(tt, 1, 10.0)],
                                      buyer_id=f"buyer-{n}")
                except InsufficientInventoryError:
                    return None

        results = await asyncio.gather(*(buyer(n) for n in range(8)))
        paid = [r for r in results if r is not None]
        assert len(paid) == 3

        async with new_db() as db:
            units = await units_of(db, tt)
            assert count_by(units) == {U_USED: 3}
            assert len({u["client_user_id"] for u in units}) == 3

    async def test_claims_ticket_types_in_id_order(
        self, db, catalog, gateway, monkeypatch
    ):
        ids = [await make_ticket_type(db, catalog, code=code, quantity=1)
               for code in ("A", "B", "C")]
        claimed = []
        real_claim = inventory.claim_for_type

        async def recording_claim(session, **kw):
            claimed.append(kw["ticket_type_id"])
            return await real_claim(session, **kw)

        monkeypatch.setattr(inventory, "claim_for_type", recording_claim)
        res = await _buy(db, gateway, catalog, [
            PurchaseItem(tt, 1, 100.0) for tt in sorted(ids, reverse=True)
        ])

        assert res.status == TX_PAID
        assert claimed == sorted(ids)

    async def test_all_or_nothing_across_types(self, db, catalog, gateway):
        a = await make_ticket_type(db, catalog, code="A", quantity=5)
        b = await make_ticket_type(db, catalog, code="B", quantity=1)

        with pytest.raises(InsufficientInventoryError) as ei:
            await _buy(db, gateway, catalog, [
                PurchaseItem(a, 2, 100.0), PurchaseItem(b, 2, 100.0)
            ])
        assert ei.value.ticket_type_id == b
        assert count_by(await units_of(db, a)) == {U_ACTIVE: 5}
        assert count_by(await units_of(db, b)) == {U_ACTIVE: 1}
        assert await transactions(db) == []
        assert gateway.calls == []

    async def test_decline_keeps_units_claimed(self, db, catalog):
        tt = await make_ticket_type(db, catalog, quantity=2)
        with pytest.raises(PaymentFailedError) as ei:
            await _buy(db, ScriptedGateway("decline"), catalog,
                       [PurchaseItem(tt, 1, 100.0)])
        assert ei.value.body()["status"] == "failed"

        (tx,) = await transactions(db)
        assert tx["status"] == TX_FAILED
        units = await units_of(db, tt)
        assert count_by(units) == {U_RESERVED: 1, U_ACTIVE: 1}
        assert all(u["client_user_id"] is None for u in units)

    async def test_gateway_unavailable_fails_transaction(self, db, catalog):
        tt = await make_ticket_type(db, catalog, quantity=1)
        with pytest.raises(PaymentFailedError):
            await _buy(db, ScriptedGateway("unavailable"), catalog,
                       [PurchaseItem(tt, 1, 100.0)])
        (tx,) = await transactions(db)
        assert tx["status"] == TX_FAILED

    async def test_timeout_leaves_transaction_pending(self, db, catalog):
        tt = await make_ticket_type(db, catalog, quantity=1)
        result = await _buy(db, ScriptedGateway("hang"), catalog,
                            [PurchaseItem(tt, 1, 100.0)], timeout=0.05)
        assert result.status == TX_PENDING

        (tx,) = await transactions(db)
        assert tx["status"] == TX_PENDING
        assert count_by(await units_of(db, tt)) == {U_RESERVED: 1}

    async def test_assignment_failure_after_capture(
        self, db, catalog, gateway, monkeypatch
    ):
        tt = await make_ticket_type(db, catalog, quantity=1)

        async def broken_assign(*args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(inventory, "assign_units", broken_assign)
        with pytest.raises(AssignmentFailedError) as ei:
            await _buy(db, gateway, catalog, [PurchaseItem(tt, 1, 100.0)])
        assert ei.value.status_code == 500
        assert "manual reconciliation" in ei.value.message

        (tx,) = await transactions(db)
        # money was captured; the ledger says so
        assert tx["status"] == TX_PAID
        assert tx["payment_gateway_id"].startswith("TEST-")

    async def test_price_mismatch(self, db, catalog, gateway):
        tt = await make_ticket_type(db, catalog, quantity=1, price=100.0)
        with pytest.raises(ValidationFailedError, match="price"):
            await _buy(db, gateway, catalog, [PurchaseItem(tt, 1, 1.0)])
        assert await transactions(db) == []

    async def test_unknown_event(self, db, catalog, gateway):
        with pytest.raises(NotFoundError):
            await checkout.process_purchase(
                db, PendingIndex(db=db), gateway, buyer_id=BUYER_ID,
                event_id="nope", items=[PurchaseItem("x", 1, 1.0)],
                payment_timeout=1.0,
            )

    async def test_gateway_not_configured(self, db, catalog, gateway):
        with pytest.raises(PaymentNotConfiguredError):
            await checkout.process_purchase(
                db, PendingIndex(db=db), gateway, buyer_id=BUYER_ID,
                event_id=catalog.unpaid_event_id,
                items=[PurchaseItem("x", 1, 1.0)], payment_timeout=1.0,
            )
