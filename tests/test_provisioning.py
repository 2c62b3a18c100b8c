import asyncio

import pytest

from wristpass import provisioning
from wristpass.errors import (
    DuplicateCodeError, ForbiddenError, NotFoundError, ProvisioningError,
    ValidationFailedError,
)
from wristpass.model import inventory
from wristpass.model.db import TT_ACTIVE, TT_CANCELLED, U_ACTIVE, U_CANCELLED
from wristpass.model.event_data import EVENT_CREATION, parse_event_data

from .helpers import MANAGER_ID, OUTSIDER_ID, count_by, ticket_types, units_of


async def _provision(db, cat, **kw):
    args = dict(
        requestor_id=MANAGER_ID,
        event_id=cat.event_id,
        company_id=cat.company_id,
        base_code="VIP",
        access_type="vip",
        price=120.0,
        quantity=10,
    )
    args.update(kw)
    return await provisioning.provision(db, **args)


class TestProvision:
    async def test_creates_numbered_units_in_batches(self, db, catalog):
        res = await _provision(db, catalog, quantity=250, batch_size=100)
        assert res.units_created == 250
        assert res.code == "VIP"

        units = await units_of(db, res.ticket_type_id)
        assert [u["sequential_number"] for u in units] == list(range(1, 251))
        assert count_by(units) == {U_ACTIVE: 250}
        assert all(u["client_user_id"] is None for u in units)
        assert all(u["code_wristbands"] == "VIP" for u in units)

        data = parse_event_data(units[41]["event_type"], units[41]["event_data"])
        assert units[41]["event_type"] == EVENT_CREATION
        assert data.sequential_entry == 42
        assert data.price == 120.0
        assert data.manager_id == MANAGER_ID

        (tt,) = await ticket_types(db, catalog.event_id)
        assert tt["status"] == TT_ACTIVE

    async def test_duplicate_code_creates_nothing(self, db, catalog):
        await _provision(db, catalog, quantity=3)
        with pytest.raises(DuplicateCodeError) as ei:
            await _provision(db, catalog, quantity=5)
        assert ei.value.status_code == 409

        (tt,) = await ticket_types(db, catalog.event_id)
        assert len(await units_of(db, tt["id"])) == 3

    async def test_failed_second_batch_rolls_back(
        self, db, catalog, monkeypatch
    ):
        calls = []
        real_insert_units = inventory.insert_units

        async def flaky_insert_units(gdb, rows):
            calls.append(len(rows))
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return await real_insert_units(gdb, rows)

        monkeypatch.setattr(inventory, "insert_units", flaky_insert_units)
        with pytest.raises(ProvisioningError):
            await _provision(db, catalog, quantity=250, batch_size=100)

        assert calls == [100, 100]
        assert await ticket_types(db, catalog.event_id) == []

    async def test_requestor_must_belong_to_company(self, db, catalog):
        with pytest.raises(ForbiddenError):
            await _provision(db, catalog, requestor_id=OUTSIDER_ID)

    async def test_event_must_belong_to_company(self, db, catalog):
        with pytest.raises(NotFoundError):
            await _provision(db, catalog, event_id=catalog.other_event_id)

    async def test_cancelled_between_batches_rolls_back(
        self, db, catalog, monkeypatch
    ):
        real_insert_units = inventory.insert_units
        calls = []

        async def cancelled_insert_units(gdb, rows):
            calls.append(len(rows))
            if len(calls) == 2:
                raise asyncio.CancelledError()
            return await real_insert_units(gdb, rows)

        monkeypatch.setattr(inventory, "insert_units", cancelled_insert_units)
        with pytest.raises(asyncio.CancelledError):
            await _provision(db, catalog, quantity=150, batch_size=100)

        assert await ticket_types(db, catalog.event_id) == []

    async def test_failed_delete_leaves_wristband_cancelled(
        self, db, catalog, monkeypatch
    ):
        real_insert_units = inventory.insert_units
        calls = []

        async def flaky_insert_units(gdb, rows):
            calls.append(len(rows))
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return await real_insert_units(gdb, rows)

        async def broken_delete(gdb, ticket_type_id):
            raise RuntimeError("connection lost")

        monkeypatch.setattr(inventory, "insert_units", flaky_insert_units)
        monkeypatch.setattr(inventory, "delete_ticket_type", broken_delete)
        with pytest.raises(ProvisioningError):
            await _provision(db, catalog, quantity=150, batch_size=100)

        (tt,) = await ticket_types(db, catalog.event_id)
        assert tt["status"] == TT_CANCELLED
        assert count_by(await units_of(db, tt["id"])) == {U_CANCELLED: 100}
        assert await inventory.event_availability(db, catalog.event_id) == []

    @pytest.mark.parametrize(
        "kw", [{"quantity": 0}, {"quantity": 10_001}, {"price": -1.0}]
    )
    async def test_rejects_bad_input(self, db, catalog, kw):
        with pytest.raises(ValidationFailedError):
            await _provision(db, catalog, **kw)
        assert await ticket_types(db, catalog.event_id) == []
