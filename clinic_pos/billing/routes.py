from decimal import Decimal, InvalidOperation
from flask import (
    request, jsonify, abort, current_app, url_for, Response
)
from sqlalchemy.exc import IntegrityError

from clinic_pos import db
from clinic_pos.billing import billing
from clinic_pos.billing.cart import BatchCartEngine, load_cart, save_cart
from clinic_pos.billing.checkout import PAYMENT_MODES, StockError, build_bill
from clinic_pos.billing.invoice import generate_bill_number
from clinic_pos.billing.models import Bill
from clinic_pos.billing.receipt import render_receipt, render_share_text, receipt_filename
from clinic_pos.billing.totals import DISCOUNT_KINDS
from clinic_pos.inventory.models import Product, ProductBatch
from clinic_pos.inventory.validators import validate_batch_cart, validate_stock


# ── Helpers ───────────────────────────────────────────────────────

def _cart():
    """The session cart as the engine configured for this store."""
    return load_cart(
        current_app.config.get('STORE_TYPE', 'retail'),
        current_app.config.get('DEFAULT_TAX_RATE', Decimal('0')),
    )


def _shop_info() -> dict:
    cfg = current_app.config
    return {
        'name':    cfg.get('SHOP_NAME'),
        'address': cfg.get('SHOP_ADDRESS'),
        'phone':   cfg.get('SHOP_PHONE'),
        'gst':     cfg.get('SHOP_GST'),
    }


def _decimal_arg(name):
    """Decimal from request.form[name]; None when blank. Raises InvalidOperation on junk."""
    raw = request.form.get(name, '').strip()
    if not raw:
        return None
    return Decimal(raw)


def _identity(cart):
    """
    Positional identity args for the cart's line operations:
    (product_id,) for retail, (product_id, batch_id) for medical.
    None when a required id is missing or not an integer.
    """
    product_id = request.form.get('product_id', type=int)
    if product_id is None:
        return None
    if isinstance(cart, BatchCartEngine):
        batch_id = request.form.get('batch_id', type=int)
        if batch_id is None:
            return None
        return (product_id, batch_id)
    return (product_id,)


def _change_dict(change):
    if change is None:
        return None
    return {
        'requested': change.requested,
        'applied':   change.applied,
        'clamped':   change.clamped,
        'removed':   change.removed,
    }


def _log_clamp(change) -> None:
    if change is not None and change.clamped:
        current_app.logger.warning(
            f"Cart qty clamped for {change.key}: requested {change.requested}, applied {change.applied}"
        )


def _cart_response(cart, change=None, error=None, status=200):
    payload = cart.to_dict()
    payload['totals']   = cart.totals.to_dict()
    payload['is_empty'] = cart.is_empty
    payload['change']   = _change_dict(change)
    if error:
        payload['error'] = error
    return jsonify(payload), status


def _bad_request(message):
    return jsonify(error=message), 400


# ── CART ──────────────────────────────────────────────────────────

@billing.route('/cart')
def cart_view():
    """Current cart lines and running totals."""
    return _cart_response(_cart())


@billing.route('/cart/add', methods=['POST'])
def add_item():
    """
    Add a product by product_id or barcode.
    Medical stores also send batch_id and qty (defaults to 1).
    """
    cart = _cart()

    product_id = request.form.get('product_id', type=int)
    barcode    = request.form.get('barcode', '').strip()
    if product_id is not None:
        product = Product.query.filter_by(id=product_id, is_active=True).first()
    elif barcode:
        product = Product.query.filter_by(barcode=barcode, is_active=True).first()
    else:
        return _bad_request('Please enter a product or barcode.')

    if product is None:
        return jsonify(error='Product not found.'), 404

    if isinstance(cart, BatchCartEngine):
        batch_id = request.form.get('batch_id', type=int)
        qty      = request.form.get('qty', default=1, type=int)
        if qty is None or qty < 1:
            return _bad_request('Quantity to add must be a whole number of at least 1.')
        batch    = db.session.get(ProductBatch, batch_id) if batch_id is not None else None
        if batch is None or batch.product_id != product.id or not batch.is_active:
            return jsonify(error=f'No batch selected for "{product.name}".'), 404
        if batch.is_expired:
            return _cart_response(cart, error=f'Batch {batch.batch_number} has expired.', status=409)
        change = cart.add_item_with_batch(product, batch.to_batch_info(qty))
    else:
        if product.stock <= 0:
            return _cart_response(cart, error=f'"{product.name}" is out of stock.', status=409)
        change = cart.add_item(product)

    _log_clamp(change)
    save_cart(cart)
    return _cart_response(cart, change)


@billing.route('/cart/qty', methods=['POST'])
def update_qty():
    """Set a line's quantity; zero or less removes it."""
    cart  = _cart()
    ident = _identity(cart)
    qty   = request.form.get('qty', type=int)
    if ident is None or qty is None:
        return _bad_request('product_id and a whole-number qty are required.')

    change = cart.update_qty(*ident, qty)
    _log_clamp(change)
    save_cart(cart)
    return _cart_response(cart, change)


@billing.route('/cart/increment', methods=['POST'])
def increment_qty():
    cart  = _cart()
    ident = _identity(cart)
    if ident is None:
        return _bad_request('product_id is required.')

    change = cart.increment_qty(*ident)
    _log_clamp(change)
    save_cart(cart)
    return _cart_response(cart, change)


@billing.route('/cart/decrement', methods=['POST'])
def decrement_qty():
    cart  = _cart()
    ident = _identity(cart)
    if ident is None:
        return _bad_request('product_id is required.')

    change = cart.decrement_qty(*ident)
    save_cart(cart)
    return _cart_response(cart, change)


@billing.route('/cart/remove', methods=['POST'])
def remove_item():
    cart  = _cart()
    ident = _identity(cart)
    if ident is None:
        return _bad_request('product_id is required.')

    cart.remove_item(*ident)
    save_cart(cart)
    return _cart_response(cart)


@billing.route('/cart/clear', methods=['POST'])
def clear():
    """Cancel the sale: drop all lines and the discount, keep the tax rate."""
    cart = _cart()
    cart.clear_cart()
    save_cart(cart)
    return _cart_response(cart)


@billing.route('/cart/discount', methods=['POST'])
def set_discount():
    """Set the cart discount: amount plus optional kind ('fixed' | 'percent')."""
    cart = _cart()
    kind = request.form.get('kind', '').strip()
    if kind and kind not in DISCOUNT_KINDS:
        return _bad_request(f'Discount kind must be one of {", ".join(DISCOUNT_KINDS)}.')
    try:
        amount = _decimal_arg('amount')
    except InvalidOperation:
        return _bad_request('Discount must be a valid number.')

    if amount is not None:
        cart.set_discount(amount)
    if kind:
        cart.set_discount_type(kind)
    save_cart(cart)
    return _cart_response(cart)


@billing.route('/cart/tax', methods=['POST'])
def set_tax():
    """Set the tax rate as a fraction (0.18 = 18%)."""
    cart = _cart()
    try:
        rate = _decimal_arg('rate')
    except InvalidOperation:
        return _bad_request('Tax rate must be a valid number.')
    if rate is None:
        return _bad_request('Tax rate is required.')

    cart.set_tax_rate(rate)
    save_cart(cart)
    return _cart_response(cart)


# ── CHECKOUT ──────────────────────────────────────────────────────

@billing.route('/checkout', methods=['POST'])
def checkout():
    """
    Finalise the sale:
      1. Lock product (and batch) rows with SELECT … FOR UPDATE, in id order
      2. Validate stock / batch expiry for every line (all-or-nothing)
      3. Deduct product stock and batch quantity
      4. Build the Bill from the cart and number it
      5. Commit, then clear the cart (tax rate is kept)
    """
    cart = _cart()
    if cart.is_empty:
        return _bad_request('Cart is empty. Add products before checking out.')

    payment_mode = request.form.get('payment_mode', 'cash').strip().lower()
    if payment_mode not in PAYMENT_MODES:
        return _bad_request(f'Payment mode must be one of {", ".join(PAYMENT_MODES)}.')
    try:
        amount_received = _decimal_arg('amount_received')
    except InvalidOperation:
        return _bad_request('Amount received must be a valid number.')

    try:
        # Sorting ids prevents deadlocks between concurrent checkouts
        products = {}
        for pid in sorted({int(i.product_id) for i in cart.items}):
            product = (
                db.session.query(Product)
                .filter(Product.id == pid)
                .with_for_update()
                .first()
            )
            if product is not None:
                products[str(pid)] = product

        errors = validate_stock(cart.items, products)

        batches = {}
        if isinstance(cart, BatchCartEngine):
            for bid in sorted({int(i.batch_id) for i in cart.items}):
                batch = (
                    db.session.query(ProductBatch)
                    .filter(ProductBatch.id == bid)
                    .with_for_update()
                    .first()
                )
                if batch is not None:
                    batches[str(bid)] = batch
            errors += validate_batch_cart(cart.items, batches)

        if errors:
            raise StockError(errors)

        for line in cart.items:
            products[line.product_id].stock -= line.qty
            if batches:
                batches[line.batch_id].quantity -= line.qty

        bill = build_bill(cart, payment_mode, amount_received,
                          request.form.get('customer_name'))
        bill.bill_number = generate_bill_number(db.session)
        db.session.add(bill)
        db.session.commit()

    except StockError as exc:
        db.session.rollback()
        current_app.logger.warning(f"Checkout rollback (stock): {exc}")
        return jsonify(error='Stock check failed.', errors=exc.errors), 409

    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.error(f"Checkout rollback (IntegrityError): {exc}")
        return jsonify(error='A database error occurred. Please try again.'), 500

    cart.clear_cart()
    save_cart(cart)

    current_app.logger.info(f"Checkout complete: {bill.bill_number} | Total: {bill.total} | {payment_mode}")
    return jsonify(
        bill_id=bill.id,
        bill_number=bill.bill_number,
        total=str(bill.total),
        amount_received=str(bill.amount_received),
        change=str(bill.change),
        receipt_url=url_for('billing.receipt', bill_id=bill.id),
    ), 201


# ── RECEIPTS ──────────────────────────────────────────────────────

def _bill_or_404(bill_id) -> Bill:
    bill = db.session.get(Bill, bill_id)
    if bill is None:
        abort(404)
    return bill


@billing.route('/receipt/<int:bill_id>')
def receipt(bill_id):
    """Printable receipt HTML (opened in the print window)."""
    bill = _bill_or_404(bill_id)
    return Response(render_receipt(bill.to_dict(), _shop_info()), mimetype='text/html')


@billing.route('/receipt/<int:bill_id>/download')
def download_receipt(bill_id):
    """Same document, served as a file download."""
    bill = _bill_or_404(bill_id)
    data = bill.to_dict()
    return Response(
        render_receipt(data, _shop_info()),
        mimetype='text/html',
        headers={'Content-Disposition': f'attachment; filename={receipt_filename(data)}'},
    )


@billing.route('/receipt/<int:bill_id>/share')
def share_receipt(bill_id):
    """Plain-text summary for messaging apps."""
    bill = _bill_or_404(bill_id)
    return Response(render_share_text(bill.to_dict(), _shop_info()), mimetype='text/plain')
