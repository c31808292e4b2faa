"""
test_cart.py — Tests for the plain (retail) cart engine and session storage.

Run: pytest test_cart.py -v
"""
from decimal import Decimal

import pytest
from flask import session

from clinic_pos import create_app
from clinic_pos.billing.cart import (
    CART_KEY, CartEngine, BatchCartEngine, LineItem, load_cart, save_cart,
)
from clinic_pos.billing.totals import DiscountSpec
from clinic_pos.inventory.models import Product


def make_product(pid=1, name='Paracetamol', price='100'):
    return Product(id=pid, name=name, price=Decimal(price))


@pytest.fixture
def cart():
    return CartEngine()


# ── 1. Adding ─────────────────────────────────────────────────────

def test_new_cart_is_empty(cart):
    assert cart.items == []
    assert cart.is_empty is True
    assert cart.discount == DiscountSpec()
    assert cart.tax_rate == Decimal('0')


def test_add_item_creates_line(cart):
    change = cart.add_item(make_product())
    assert cart.items == [LineItem(product_id='1', name='Paracetamol', price=Decimal('100'), qty=1)]
    assert cart.items[0].total == Decimal('100')
    assert change.requested == 1 and change.applied == 1
    assert not change.clamped


def test_add_same_product_twice_increments(cart):
    p = make_product()
    cart.add_item(p)
    cart.add_item(p)
    assert len(cart.items) == 1
    assert cart.items[0].qty == 2
    assert cart.items[0].total == Decimal('200')


def test_add_has_no_upper_bound(cart):
    p = make_product(price='1')
    for _ in range(500):
        cart.add_item(p)
    assert cart.get_item_qty(1) == 500


def test_lines_keep_insertion_order(cart):
    cart.add_item(make_product(2, 'B'))
    cart.add_item(make_product(1, 'A'))
    cart.add_item(make_product(2, 'B'))
    assert [i.product_id for i in cart.items] == ['2', '1']


# ── 2. Quantity changes ──────────────────────────────────────────

def test_update_qty_sets_and_recomputes(cart):
    cart.add_item(make_product())
    cart.update_qty(1, 5)
    assert cart.items[0].qty == 5
    assert cart.items[0].total == Decimal('500')


@pytest.mark.parametrize('qty', [0, -1, -10])
def test_update_qty_non_positive_removes(cart, qty):
    cart.add_item(make_product())
    change = cart.update_qty(1, qty)
    assert cart.is_empty
    assert change.removed


def test_update_qty_unknown_product_is_noop(cart):
    cart.add_item(make_product())
    assert cart.update_qty(99, 3) is None
    assert cart.get_item_qty(1) == 1


def test_increment_and_decrement(cart):
    cart.add_item(make_product())
    cart.increment_qty(1)
    cart.increment_qty(1)
    assert cart.get_item_qty(1) == 3
    cart.decrement_qty(1)
    assert cart.get_item_qty(1) == 2
    assert cart.items[0].total == Decimal('200')


def test_decrement_at_one_removes_line(cart):
    cart.add_item(make_product())
    change = cart.decrement_qty(1)
    assert cart.items == []
    assert change.removed


def test_increment_decrement_unknown_are_noops(cart):
    assert cart.increment_qty(7) is None
    assert cart.decrement_qty(7) is None
    assert cart.is_empty


def test_cart_never_holds_non_positive_qty(cart):
    p1, p2 = make_product(1), make_product(2)
    ops = [
        lambda: cart.add_item(p1), lambda: cart.add_item(p2),
        lambda: cart.decrement_qty(1), lambda: cart.update_qty(2, -4),
        lambda: cart.add_item(p1), lambda: cart.increment_qty(1),
        lambda: cart.decrement_qty(1), lambda: cart.decrement_qty(1),
        lambda: cart.decrement_qty(1),
    ]
    for op in ops:
        op()
        assert all(i.qty > 0 for i in cart.items)
        assert all(i.total == i.qty * i.price for i in cart.items)


# ── 3. Remove / clear ────────────────────────────────────────────

def test_remove_item_is_idempotent(cart):
    cart.add_item(make_product(1))
    cart.add_item(make_product(2))
    cart.remove_item(1)
    before = list(cart.items)
    cart.remove_item(1)
    cart.remove_item(1)
    assert cart.items == before


def test_clear_resets_items_and_discount_but_keeps_tax(cart):
    cart.add_item(make_product())
    cart.set_discount(15)
    cart.set_discount_type('percent')
    cart.set_tax_rate(Decimal('0.18'))

    cart.clear_cart()

    assert cart.items == []
    assert cart.is_empty
    assert cart.discount == DiscountSpec(Decimal('0'), 'fixed')
    assert cart.tax_rate == Decimal('0.18')


def test_get_item_qty_absent_is_zero(cart):
    assert cart.get_item_qty(42) == 0


# ── 4. Totals via the engine ─────────────────────────────────────

def test_percent_discount_on_cart(cart):
    cart.add_item(make_product(price='100'))
    cart.set_discount(10)
    cart.set_discount_type('percent')
    assert cart.totals.discount == 10
    assert cart.totals.total == 90


def test_tax_on_cart(cart):
    cart.add_item(make_product(price='100'))
    cart.set_tax_rate('0.10')
    assert cart.totals.tax == 10
    assert cart.totals.total == 110


def test_subtotal_matches_lines(cart):
    cart.add_item(make_product(1, price='12.50'))
    cart.add_item(make_product(2, price='3.25'))
    cart.update_qty(2, 4)
    assert cart.totals.subtotal == sum(i.total for i in cart.items)
    assert cart.totals.item_count == 5


def test_setters_accept_negative_values(cart):
    cart.add_item(make_product(price='100'))
    cart.set_discount(-10)
    cart.set_tax_rate('-0.5')
    assert cart.discount.amount == Decimal('-10')
    assert cart.tax_rate == Decimal('-0.5')
    assert cart.totals.total == Decimal('55.0')


# ── 5. Serialisation & Flask session storage ────────────────────

def test_to_dict_from_dict_preserves_state(cart):
    cart.add_item(make_product(1, price='9.99'))
    cart.update_qty(1, 3)
    cart.set_discount('5')
    cart.set_tax_rate('0.05')

    restored = CartEngine.from_dict(cart.to_dict())
    assert restored.items == cart.items
    assert restored.discount == cart.discount
    assert restored.tax_rate == cart.tax_rate
    assert restored.totals == cart.totals


def test_session_storage():
    app = create_app('testing')
    with app.test_request_context():
        cart = load_cart('retail', Decimal('0.12'))
        assert isinstance(cart, CartEngine)
        assert cart.tax_rate == Decimal('0.12')

        cart.add_item(make_product())
        save_cart(cart)
        assert session[CART_KEY]['items'][0]['price'] == '100'

        again = load_cart('retail')
        assert again.get_item_qty(1) == 1

        # A cart saved by another engine is not reused
        assert isinstance(load_cart('medical'), BatchCartEngine)
        assert load_cart('medical').is_empty
