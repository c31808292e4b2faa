from flask import request, jsonify, abort, current_app
from clinic_pos import db
from clinic_pos.inventory import inventory
from clinic_pos.inventory.models import Product


def _product_dict(product) -> dict:
    return {
        'id':      product.id,
        'name':    product.name,
        'barcode': product.barcode,
        'price':   str(product.price),
        'stock':   product.stock,
    }


# ── SEARCH ────────────────────────────────────────────────────────────────────

@inventory.route('/products')
def products():
    """Active products matching ?q= on name or barcode, ordered by name."""
    q = request.args.get('q', '').strip()
    query = Product.query.filter_by(is_active=True)
    if q:
        query = query.filter(db.or_(Product.name.ilike(f'%{q}%'),
                                    Product.barcode == q))
    rows = query.order_by(Product.name.asc()).limit(50).all()
    return jsonify(products=[_product_dict(p) for p in rows])


# ── BATCHES ───────────────────────────────────────────────────────────────────

@inventory.route('/<int:product_id>/batches')
def batches(product_id):
    """Sellable batches for a product (FEFO order) with their expiry status."""
    product = db.session.get(Product, product_id)
    if product is None:
        abort(404)

    warning  = current_app.config.get('EXPIRY_WARNING_DAYS', 30)
    critical = current_app.config.get('EXPIRY_CRITICAL_DAYS', 7)
    return jsonify(
        product=_product_dict(product),
        batches=[
            {
                'id':             b.id,
                'batch_number':   b.batch_number,
                'expiry_date':    b.expiry_date.isoformat() if b.expiry_date else None,
                'quantity':       b.quantity,
                'days_to_expiry': b.days_to_expiry,
                'status':         b.expiry_status(warning, critical),
            }
            for b in product.sellable_batches()
        ],
    )
