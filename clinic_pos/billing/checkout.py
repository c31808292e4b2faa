"""
clinic_pos/billing/checkout.py
------------------------------
Turn a finished cart into an unsaved Bill.

No DB writes happen here. The checkout route owns the transaction:
it locks stock rows, validates, deducts, numbers and persists the Bill.
"""
from decimal import Decimal
from typing import Tuple

from clinic_pos.billing.cart import CartSession
from clinic_pos.billing.models import Bill, BillItem
from clinic_pos.billing.totals import ZERO, to_decimal


PAYMENT_MODES = ('cash', 'upi', 'card')


class StockError(ValueError):
    """Raised inside the checkout transaction when stock can't cover the cart."""
    def __init__(self, errors):
        super().__init__('; '.join(errors))
        self.errors = list(errors)


def payment_amounts(total: Decimal, payment_mode: str, amount_received=None) -> Tuple[Decimal, Decimal]:
    """
    Return (amount_received, change) for a payment.

    Cash records what was tendered (the exact total when nothing was
    entered) and change = max(0, tendered − total). Other modes are
    always for the exact total with no change.
    """
    if payment_mode != 'cash':
        return total, ZERO

    tendered = to_decimal(amount_received)
    received = tendered if tendered else total
    return received, max(ZERO, tendered - total)


def build_bill(cart: CartSession, payment_mode: str = 'cash',
               amount_received=None, customer_name: str = None) -> Bill:
    """Snapshot the cart lines and totals into a Bill with its BillItems."""
    totals = cart.totals
    received, change = payment_amounts(totals.total, payment_mode, amount_received)

    bill = Bill(
        customer_name   = (customer_name or '').strip() or None,
        subtotal        = totals.subtotal,
        discount        = totals.discount,
        discount_type   = cart.discount.kind,
        discount_value  = cart.discount.amount,
        tax             = totals.tax,
        tax_rate        = cart.tax_rate,
        total           = totals.total,
        payment_mode    = payment_mode,
        amount_received = received,
        change          = change,
        status          = 'paid',
    )

    for line in cart.items:
        batch_id = getattr(line, 'batch_id', None)
        bill.items.append(BillItem(
            product_id  = int(line.product_id),
            name        = line.name,
            price       = line.price,
            qty         = line.qty,
            total       = line.total,
            batch_id    = int(batch_id) if batch_id else None,
            batch_no    = getattr(line, 'batch_no', None),
            expiry_date = getattr(line, 'expiry_date', None),
        ))

    return bill
