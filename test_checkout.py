"""
test_checkout.py — Tests for bill assembly, checkout validators and bill numbering.

Run: pytest test_checkout.py -v
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from clinic_pos import create_app, db
from clinic_pos.billing.cart import BatchCartEngine, BatchInfo, CartEngine
from clinic_pos.billing.checkout import build_bill, payment_amounts
from clinic_pos.billing.invoice import format_bill_number, generate_bill_number
from clinic_pos.billing.models import Bill, BillSequence
from clinic_pos.billing.receipt import render_receipt
from clinic_pos.inventory.models import Product, ProductBatch
from clinic_pos.inventory.validators import validate_batch_cart, validate_stock


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def retail_cart():
    cart = CartEngine()
    cart.add_item(Product(id=1, name='Soap', price=Decimal('40')))
    cart.add_item(Product(id=1, name='Soap', price=Decimal('40')))
    cart.add_item(Product(id=2, name='Shampoo', price=Decimal('120')))
    return cart


# ── 1. Payment amounts ───────────────────────────────────────────

def test_cash_with_tendered_amount_gives_change():
    assert payment_amounts(Decimal('118'), 'cash', Decimal('200')) == (Decimal('200'), Decimal('82'))


def test_cash_without_tendered_amount_is_exact():
    assert payment_amounts(Decimal('118'), 'cash', None) == (Decimal('118'), Decimal('0'))


def test_cash_short_tender_gives_no_negative_change():
    received, change = payment_amounts(Decimal('118'), 'cash', Decimal('100'))
    assert received == Decimal('100')
    assert change == Decimal('0')


@pytest.mark.parametrize('mode', ['upi', 'card'])
def test_non_cash_is_always_exact(mode):
    assert payment_amounts(Decimal('50'), mode, Decimal('500')) == (Decimal('50'), Decimal('0'))


# ── 2. Bill assembly ─────────────────────────────────────────────

def test_build_bill_snapshots_cart():
    cart = retail_cart()
    cart.set_discount(10)
    cart.set_discount_type('percent')
    cart.set_tax_rate('0.05')

    bill = build_bill(cart, 'cash', Decimal('300'), '  Meera  ')

    assert bill.subtotal == Decimal('200')
    assert bill.discount == Decimal('20')
    assert bill.discount_type == 'percent'
    assert bill.discount_value == Decimal('10')
    assert bill.tax == Decimal('9.00')
    assert bill.total == Decimal('189.00')
    assert bill.amount_received == Decimal('300')
    assert bill.change == Decimal('111.00')
    assert bill.customer_name == 'Meera'
    assert bill.status == 'paid'
    assert [(i.product_id, i.qty, i.total) for i in bill.items] == [
        (1, 2, Decimal('80')), (2, 1, Decimal('120')),
    ]
    assert all(i.batch_id is None for i in bill.items)


def test_build_bill_carries_batch_details():
    cart = BatchCartEngine()
    expiry = date(2027, 1, 31)
    cart.add_item_with_batch(Product(id=3, name='Cetirizine', price=Decimal('5')),
                             BatchInfo('11', 'CTZ-01', expiry, 4, 10))
    bill = build_bill(cart, 'upi')
    item = bill.items[0]
    assert (item.batch_id, item.batch_no, item.expiry_date) == (11, 'CTZ-01', expiry)
    assert bill.amount_received == Decimal('20')
    assert bill.change == Decimal('0')
    assert bill.customer_name is None


def test_built_bill_renders_without_persisting():
    html = render_receipt(build_bill(retail_cart(), 'card'))
    assert 'Shampoo' in html
    assert 'CARD' in html


# ── 3. Validators ────────────────────────────────────────────────

def test_validate_stock():
    cart = retail_cart()
    products = {
        '1': Product(id=1, name='Soap', price=Decimal('40'), stock=1),
        '2': Product(id=2, name='Shampoo', price=Decimal('120'), stock=5),
    }
    errors = validate_stock(cart.items, products)
    assert errors == ['Insufficient stock for "Soap". Available: 1, requested: 2.']

    products['1'].stock = 2
    assert validate_stock(cart.items, products) == []


def test_validate_stock_missing_product():
    cart = retail_cart()
    errors = validate_stock(cart.items, {'1': Product(id=1, name='Soap', price=1, stock=9)})
    assert errors == ['Shampoo is no longer available.']


def test_validate_batch_cart():
    p = Product(id=3, name='Cetirizine', price=Decimal('5'))
    cart = BatchCartEngine()
    cart.add_item_with_batch(p, BatchInfo('11', 'CTZ-01', None, 4, 10))
    cart.add_item_with_batch(p, BatchInfo('12', 'CTZ-02', None, 2, 10))
    cart.add_item_with_batch(p, BatchInfo('13', 'CTZ-03', None, 1, 10))

    today = date.today()
    batches = {
        '11': ProductBatch(id=11, product_id=3, batch_number='CTZ-01',
                           expiry_date=today + timedelta(days=60), quantity=3),
        '12': ProductBatch(id=12, product_id=3, batch_number='CTZ-02',
                           expiry_date=today - timedelta(days=1), quantity=50),
    }
    errors = validate_batch_cart(cart.items, batches)
    assert errors == [
        'Cetirizine (Batch: CTZ-01): only 3 available, requested 4.',
        'Cetirizine (Batch: CTZ-02) has expired.',
        'Batch for Cetirizine not found.',
    ]


def test_validate_batch_cart_withdrawn_lot_is_not_found():
    cart = BatchCartEngine()
    cart.add_item_with_batch(Product(id=3, name='Cetirizine', price=Decimal('5')),
                             BatchInfo('11', 'CTZ-01', None, 1, 10))
    lot = ProductBatch(id=11, product_id=3, batch_number='CTZ-01', quantity=50, is_active=False)
    assert validate_batch_cart(cart.items, {'11': lot}) == ['Batch for Cetirizine not found.']

    lot.is_active = True
    assert validate_batch_cart(cart.items, {'11': lot}) == []


def test_validate_batch_cart_skips_plain_lines():
    assert validate_batch_cart(retail_cart().items, {}) == []


# ── 4. Bill numbering ────────────────────────────────────────────

def test_format_bill_number():
    assert format_bill_number(date(2026, 10, 19), 3) == 'INV202610190003'
    assert format_bill_number(date(2026, 10, 19), 12345) == 'INV2026101912345'


def test_generate_bill_number_is_sequential_per_day(app):
    day = date(2026, 10, 19)
    first  = generate_bill_number(db.session, day)
    second = generate_bill_number(db.session, day)
    other  = generate_bill_number(db.session, day + timedelta(days=1))
    db.session.commit()

    assert (first, second) == ('INV202610190001', 'INV202610190002')
    assert other == 'INV202610200001'
    assert db.session.get(BillSequence, day).last_seq == 2


def test_persisted_bill_to_dict(app):
    db.session.add(Product(id=1, name='Soap', price=Decimal('40'), stock=10))
    db.session.add(Product(id=2, name='Shampoo', price=Decimal('120'), stock=10))
    bill = build_bill(retail_cart(), 'cash', Decimal('500'))
    bill.bill_number = generate_bill_number(db.session)
    db.session.add(bill)
    db.session.commit()

    data = db.session.get(Bill, bill.id).to_dict()
    assert data['bill_number'] == bill.bill_number
    assert data['total'] == Decimal('200')
    assert data['change'] == Decimal('300')
    assert [i['name'] for i in data['items']] == ['Soap', 'Shampoo']
    assert data['created_at'] is not None
