"""
clinic_pos/inventory/validators.py
----------------------------------
Pure-Python checks run at checkout before stock is deducted.
Each returns a list of human-readable messages.
An empty list means the cart can be sold as-is.
"""


def validate_batch_cart(items, batches: dict) -> list:
    """
    Check every batch line against the current stock lots.

    Args:
        items:   BatchLineItem rows from the medical cart
        batches: {batch_id_str: ProductBatch}, typically freshly locked rows

    Lines without a batch (non-medical products) are skipped. A withdrawn
    (inactive) lot is reported the same way as a missing one.
    """
    errors = []

    for item in items:
        batch_id = getattr(item, 'batch_id', None)
        if not batch_id:
            continue

        batch = batches.get(str(batch_id))
        if (batch is None or batch.is_active is False
                or str(batch.product_id) != str(item.product_id)):
            errors.append(f'Batch for {item.name} not found.')
            continue

        if batch.is_expired:
            errors.append(f'{item.name} (Batch: {batch.batch_number}) has expired.')
            continue

        if batch.quantity < item.qty:
            errors.append(
                f'{item.name} (Batch: {batch.batch_number}): '
                f'only {batch.quantity} available, requested {item.qty}.'
            )

    return errors


def validate_stock(items, products: dict) -> list:
    """
    Check total requested quantity per product against product stock.

    Args:
        items:    cart line items (plain or batch)
        products: {product_id_str: Product}
    """
    errors = []
    required = {}
    names = {}
    for item in items:
        required[item.product_id] = required.get(item.product_id, 0) + item.qty
        names[item.product_id] = item.name

    for pid, qty in required.items():
        product = products.get(pid)
        if product is None:
            errors.append(f'{names[pid]} is no longer available.')
        elif product.stock < qty:
            errors.append(
                f'Insufficient stock for "{product.name}". '
                f'Available: {product.stock}, requested: {qty}.'
            )

    return errors
