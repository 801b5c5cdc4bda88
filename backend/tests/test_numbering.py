import asyncio
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from duka.models import Sale, StockBatch
from duka.services.numbering import generate_batch_number, generate_sale_number, next_sequence_value

from conftest import receive


def today():
    return datetime.utcnow().strftime("%Y%m%d")


def test_numbers_are_unique_before_rows_exist(run_db, seed):
    async def fn(db):
        # 单据还没写入时连续取号也不会重复
        first = await generate_sale_number(db, seed["org_id"])
        second = await generate_sale_number(db, seed["org_id"])
        await db.commit()
        return first, second

    assert run_db(fn) == (f"SL{today()}-001", f"SL{today()}-002")


def test_sequence_survives_across_sessions(session_factory, seed):
    async def scenario():
        async with session_factory() as first, session_factory() as second:
            a = await generate_batch_number(first, seed["org_id"])
            await first.commit()
            b = await generate_batch_number(second, seed["org_id"])
            await second.commit()
            return a, b

    assert asyncio.run(scenario()) == (f"BT{today()}-001", f"BT{today()}-002")


def test_sequence_is_per_prefix(run_db, seed):
    async def fn(db):
        values = [
            await next_sequence_value(db, seed["org_id"], "SL20250101"),
            await next_sequence_value(db, seed["org_id"], "SL20250101"),
            await next_sequence_value(db, seed["org_id"], "RT20250101"),
            await next_sequence_value(db, seed["org_id"], "SL20250102", seed=7),
        ]
        await db.commit()
        return values

    assert run_db(fn) == [1, 2, 1, 8]


def test_duplicate_sale_number_is_rejected(run_db, seed):
    async def fn(db):
        for _ in range(2):
            db.add(Sale(organization_id=seed["org_id"], sale_number="SL20250101-001", payment_method="CASH"))
        await db.flush()

    with pytest.raises(IntegrityError):
        run_db(fn)


def test_received_batches_get_distinct_numbers(client, headers, run_db, warehouse, product):
    batches = [receive(client, headers, product["id"], warehouse["location"]["id"], 2).json() for _ in range(3)]
    assert [b["batch_number"] for b in batches] == [f"BT{today()}-{n:03d}" for n in (1, 2, 3)]

    async def fn(db):
        batch = await db.get(StockBatch, batches[0]["id"])
        db.add(StockBatch(
            organization_id=batch.organization_id, batch_number=batch.batch_number,
            product_id=batch.product_id, location_id=batch.location_id,
            initial_quantity=1, current_quantity=1,
        ))
        await db.flush()

    with pytest.raises(IntegrityError):
        run_db(fn)
