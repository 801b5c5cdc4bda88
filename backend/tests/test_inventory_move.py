import asyncio

import pytest
from sqlalchemy import select

from duka.models import (
    InventoryLocation, StorageUnit, StorageZone, StoragePosition, StockBatch, StockMovement, AuditLog,
)
from duka.services.inventory_move import FULL, NOOP, PARTIAL, MoveRejected, move_batch, validate_move
from duka.services.stock_ledger import claim_position

from conftest import receive, dec


# ===== 纯校验 =====

def test_move_more_than_current_is_rejected():
    with pytest.raises(MoveRejected) as exc:
        validate_move(45, 50, 1, 2, False)
    assert exc.value.status_code == 400


@pytest.mark.parametrize("quantity", [0, -3])
def test_non_positive_quantity_is_rejected(quantity):
    with pytest.raises(MoveRejected):
        validate_move(45, quantity, 1, 2, False)


def test_occupied_destination_is_rejected():
    with pytest.raises(MoveRejected) as exc:
        validate_move(45, 10, 1, 2, True)
    assert exc.value.status_code == 409


def test_same_position_is_noop():
    assert validate_move(45, 10, 2, 2, True) == NOOP


def test_full_and_partial():
    assert validate_move(45, 45, 1, 2, False) == FULL
    assert validate_move(45, 20, None, 2, False) == PARTIAL


# ===== 接口 =====

@pytest.fixture
def stocked(client, headers, warehouse, product):
    resp = receive(client, headers, product["id"], warehouse["location"]["id"], 45,
                   position_id=warehouse["positions"]["A1"])
    assert resp.status_code == 200, resp.text
    return resp.json()


def _counters(run_db, warehouse):
    async def fn(db):
        location = await db.get(InventoryLocation, warehouse["location"]["id"])
        unit = await db.get(StorageUnit, warehouse["unit"]["id"])
        zone = await db.get(StorageZone, warehouse["zone"]["id"])
        positions = (await db.execute(select(StoragePosition))).scalars().all()
        return {
            "location": location.capacity_used,
            "unit": unit.capacity_used,
            "zone": zone.capacity_used,
            "occupied": {p.identifier for p in positions if p.is_occupied},
        }
    return run_db(fn)


def test_receipt_updates_counters(run_db, warehouse, stocked):
    counters = _counters(run_db, warehouse)
    assert counters["location"] == dec(45)
    assert counters["unit"] == dec(45)
    assert counters["zone"] == dec(45)
    assert counters["occupied"] == {"A1"}


def test_move_rejects_quantity_above_current(client, headers, warehouse, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": warehouse["positions"]["A2"], "quantity": 50},
                       headers=headers)
    assert resp.status_code == 400


def test_move_requires_member(client, seed, warehouse, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": warehouse["positions"]["A2"], "quantity": 5},
                       headers={"X-Organization-Id": str(seed["org_id"])})
    assert resp.status_code == 400


def test_full_move(client, headers, run_db, warehouse, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": warehouse["positions"]["A2"], "quantity": 45},
                       headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["created"] is None
    assert body["source"]["position_identifier"] == "A2"
    assert body["source"]["current_quantity"] == 45

    counters = _counters(run_db, warehouse)
    assert counters["occupied"] == {"A2"}
    assert counters["unit"] == dec(45)
    assert counters["location"] == dec(45)


def test_partial_move_splits_batch(client, headers, run_db, warehouse, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": warehouse["positions"]["A3"], "quantity": 15, "notes": "restock"},
                       headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["source"]["current_quantity"] == 30
    assert body["source"]["status"] == "partial"
    assert body["created"]["current_quantity"] == 15
    assert body["created"]["batch_number"] == f"{stocked['batch_number']}-M1"
    assert body["created"]["position_identifier"] == "A3"

    counters = _counters(run_db, warehouse)
    assert counters["occupied"] == {"A1", "A3"}
    assert counters["unit"] == dec(45)

    async def fn(db):
        moves = (await db.execute(select(StockMovement).where(StockMovement.movement_type == "MOVE"))).scalars().all()
        logs = (await db.execute(select(AuditLog).where(AuditLog.action == "move"))).scalars().all()
        return moves, logs
    moves, logs = run_db(fn)
    assert len(moves) == 1 and moves[0].quantity == 15
    assert len(logs) == 1


def test_move_to_occupied_position_is_rejected(client, headers, warehouse, product, stocked):
    other = receive(client, headers, product["id"], warehouse["location"]["id"], 5,
                    position_id=warehouse["positions"]["A4"]).json()
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": warehouse["positions"]["A4"], "quantity": 10},
                       headers=headers)
    assert resp.status_code == 409
    assert other["position_identifier"] == "A4"


def test_move_to_same_position_is_noop(client, headers, run_db, warehouse, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": warehouse["positions"]["A1"], "quantity": 10},
                       headers=headers)
    assert resp.status_code == 200
    assert resp.json()["noop"] is True
    assert _counters(run_db, warehouse)["unit"] == dec(45)


def test_move_to_unknown_position(client, headers, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/move",
                       json={"new_position_id": 9999, "quantity": 10}, headers=headers)
    assert resp.status_code == 404


def test_receive_into_occupied_position_is_rejected(client, headers, warehouse, product, stocked):
    resp = receive(client, headers, product["id"], warehouse["location"]["id"], 5,
                   position_id=warehouse["positions"]["A1"])
    assert resp.status_code == 409


# ===== 并发占位 =====

def test_position_claim_is_exclusive_across_sessions(session_factory, warehouse):
    position_id = warehouse["positions"]["A3"]

    async def scenario():
        async with session_factory() as first, session_factory() as second:
            # 两个会话都读到货位空闲
            mine = await first.get(StoragePosition, position_id)
            theirs = await second.get(StoragePosition, position_id)
            assert not mine.is_occupied and not theirs.is_occupied

            assert await claim_position(first, mine) is True
            await first.commit()
            return await claim_position(second, theirs)

    assert asyncio.run(scenario()) is False


def test_concurrent_moves_into_same_position(client, headers, session_factory, run_db, seed, warehouse, product,
                                             stocked):
    other = receive(client, headers, product["id"], warehouse["location"]["id"], 5,
                    position_id=warehouse["positions"]["A2"]).json()
    target = warehouse["positions"]["A3"]

    def move(db, batch):
        return move_batch(db, stock_batch_id=batch["id"], new_position_id=target, quantity=batch["current_quantity"],
                          actor_id=seed["owner_id"], organization_id=seed["org_id"])

    async def scenario():
        async with session_factory() as first, session_factory() as second:
            await move(first, stocked)
            racing = asyncio.create_task(move(second, other))
            await asyncio.sleep(0.2)
            await first.commit()
            try:
                await racing
            except MoveRejected as e:
                return e.status_code
            await second.commit()
            return 200

    assert asyncio.run(scenario()) == 409

    async def at_target(db):
        result = await db.execute(select(StockBatch.id).where(StockBatch.position_id == target))
        return result.scalars().all()
    assert run_db(at_target) == [stocked["id"]]
    assert client.get(f"/api/batches/{other['id']}", headers=headers).json()["position_identifier"] == "A2"


def test_receive_into_claimed_position_is_rejected(client, headers, run_db, warehouse, product):
    position_id = warehouse["positions"]["A3"]

    async def fn(db):
        # 另一个事务已占位、批次还没写入
        claimed = await claim_position(db, await db.get(StoragePosition, position_id))
        await db.commit()
        return claimed
    assert run_db(fn) is True

    resp = receive(client, headers, product["id"], warehouse["location"]["id"], 5, position_id=position_id)
    assert resp.status_code == 409
