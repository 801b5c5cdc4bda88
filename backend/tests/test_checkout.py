from decimal import Decimal
from types import SimpleNamespace

import pytest

from duka.services import checkout as co


def test_totals_example():
    totals = co.compute_totals([(170000, 2), (210000, 3)], Decimal("0.10"), Decimal("0.025"))
    assert totals.subtotal == Decimal("970000.00")
    assert totals.discount == Decimal("97000.00")
    assert totals.tax == Decimal("24250.00")
    assert totals.total == Decimal("897250.00")


def test_total_identity_holds():
    totals = co.compute_totals([(Decimal("19.99"), 3), (Decimal("0.35"), 7)], "0.10", "0.16")
    assert totals.total == totals.subtotal - totals.discount + totals.tax


def test_empty_cart_totals_zero():
    totals = co.compute_totals([], "0.10", "0.025")
    assert totals.subtotal == Decimal("0.00")
    assert totals.total == Decimal("0.00")


def test_negative_line_rejected():
    with pytest.raises(ValueError):
        co.compute_totals([(10, -1)], "0", "0")


@pytest.mark.parametrize("paid,total,change", [
    ("1000", "897.25", "102.75"),
    ("897.25", "897.25", "0.00"),
    ("500", "897.25", "0.00"),
])
def test_change(paid, total, change):
    assert co.compute_change(paid, total) == Decimal(change)


def test_rates_fall_back_to_settings():
    org = SimpleNamespace(
        discount_rate_or=lambda fallback: fallback,
        tax_rate_or=lambda fallback: Decimal("0.16"),
    )
    discount_rate, tax_rate = co.resolve_rates(org)
    assert discount_rate == co.settings.DEFAULT_DISCOUNT_RATE
    assert tax_rate == Decimal("0.16")


def _item(product_id=1, price="100.00", quantity=1):
    return co.CartItem(product_id=product_id, variant_id=None, name="Soda",
                       unit_price=Decimal(price), quantity=quantity)


def test_session_happy_path_clears_cart():
    session = co.CheckoutSession()
    session.add_item(_item(quantity=2))
    session.add_item(_item(quantity=1))
    assert session.lines[0].quantity == 3

    session.select_method("CASH")
    session.begin_processing()
    assert session.state == co.PROCESSING
    session.succeed()
    assert session.state == co.SUCCESS
    assert session.lines == []
    session.reset()
    assert session.state == co.IDLE


def test_failed_goes_back_to_method_selected():
    session = co.CheckoutSession()
    session.add_item(_item())
    session.select_method("MPESA")
    session.begin_processing()
    session.fail("timeout")
    assert session.failure_reason == "timeout"
    session.select_method("CASH")
    assert session.state == co.METHOD_SELECTED
    assert session.failure_reason is None
    assert len(session.lines) == 1


@pytest.mark.parametrize("action", ["begin_processing", "succeed", "reset"])
def test_invalid_transitions_from_idle(action):
    session = co.CheckoutSession()
    session.add_item(_item())
    with pytest.raises(co.InvalidTransition):
        getattr(session, action)()


def test_cannot_process_empty_cart():
    session = co.CheckoutSession()
    session.select_method("CASH")
    with pytest.raises(co.InvalidTransition):
        session.begin_processing()


def test_cart_locked_while_processing():
    session = co.CheckoutSession()
    session.add_item(_item())
    session.select_method("CARD")
    session.begin_processing()
    with pytest.raises(co.InvalidTransition):
        session.add_item(_item(product_id=2))
    with pytest.raises(co.InvalidTransition):
        session.remove_item(1)
