"""
clinic_pos/billing/receipt.py
-----------------------------
Render a stored Bill into a self-contained 80 mm thermal receipt (HTML).

render_receipt() is pure and total: identical input always yields the
identical document, and missing fields fall back to defaults instead of
raising. The print window / file download around it lives in the routes.

Layout, top to bottom:
    shop header → bill no + date → [customer] → items table
    → subtotal, [discount], [tax], TOTAL → payment, [received, change]
    → footer
"""
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from jinja2 import Environment, PackageLoader, select_autoescape

from clinic_pos.billing.totals import ZERO, to_decimal


Q = Decimal('0.01')
CURRENCY_SYMBOL = '₹'
DATE_FORMAT     = '%d/%m/%Y'
DATETIME_FORMAT = '%d/%m/%Y %H:%M'

DEFAULT_SHOP_NAME    = 'Zetta POS'
DEFAULT_PAYMENT_MODE = 'cash'

_env = Environment(
    loader=PackageLoader('clinic_pos.billing', 'templates'),
    autoescape=select_autoescape(['html']),
    trim_blocks=True,
    lstrip_blocks=True,
)


# ── Formatting ────────────────────────────────────────────────────

def _amount(value) -> Decimal:
    """Decimal for display; unparseable, missing, NaN and infinite values become 0."""
    try:
        value = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    return value if value.is_finite() else ZERO


def format_currency(amount) -> str:
    """₹ with exactly two decimals. Unparseable or missing amounts show as ₹0.00."""
    return f"{CURRENCY_SYMBOL}{_amount(amount).quantize(Q, rounding=ROUND_HALF_UP)}"


def format_timestamp(value, fmt: str = DATETIME_FORMAT) -> str:
    """dd/mm/yyyy HH:MM for datetimes (and ISO strings); dd/mm/yyyy for plain dates."""
    if value is None or value == '':
        return ''
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if isinstance(value, datetime):
        return value.strftime(fmt)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    return str(value)


_env.filters['currency'] = format_currency


# ── Field access ──────────────────────────────────────────────────

def _get(obj, name, default=None):
    """Read `name` from a mapping or an object; None/missing → default."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(name)
    else:
        value = getattr(obj, name, None)
    return default if value is None else value


def bill_reference(bill) -> str:
    """Bill number, or the record id when the bill was never numbered."""
    return str(_get(bill, 'bill_number') or _get(bill, 'id', ''))


def receipt_filename(bill) -> str:
    return f"receipt_{bill_reference(bill)}.html"


def _line(item) -> dict:
    qty   = _get(item, 'qty', 0)
    price = _amount(_get(item, 'price'))
    total = _get(item, 'total')
    return {
        'name':     _get(item, 'name', ''),
        'qty':      qty,
        'price':    price,
        'amount':   _amount(total) if total is not None else price * _amount(qty),
        'batch_no': _get(item, 'batch_no'),
    }


def receipt_context(bill, shop_info=None) -> dict:
    """Everything the receipt template needs, with defaults applied."""
    payment_mode = str(_get(bill, 'payment_mode', DEFAULT_PAYMENT_MODE))
    received     = _get(bill, 'amount_received')
    show_cash    = payment_mode.lower() == 'cash' and _amount(received) != ZERO

    return {
        'shop': {
            'name':    _get(shop_info, 'name') or DEFAULT_SHOP_NAME,
            'address': _get(shop_info, 'address', ''),
            'phone':   _get(shop_info, 'phone', ''),
            'gst':     _get(shop_info, 'gst', ''),
        },
        'bill_ref':     bill_reference(bill),
        'timestamp':    format_timestamp(_get(bill, 'created_at')),
        'customer':     _get(bill, 'patient_name') or _get(bill, 'customer_name'),
        'items':        [_line(i) for i in _get(bill, 'items', [])],
        'subtotal':     _amount(_get(bill, 'subtotal')),
        'discount':     _amount(_get(bill, 'discount')),
        'tax':          _amount(_get(bill, 'tax')),
        'total':        _amount(_get(bill, 'total')),
        'payment_mode': payment_mode.upper(),
        'show_cash':    show_cash,
        'received':     _amount(received),
        'change':       _amount(_get(bill, 'change')),
    }


# ── Public API ────────────────────────────────────────────────────

def render_receipt(bill, shop_info=None) -> str:
    """
    Render `bill` (a Bill, or any mapping with the same keys) as printable HTML.

    shop_info supplies name/address/phone/gst; all are optional.
    """
    template = _env.get_template('receipt.html')
    return template.render(**receipt_context(bill, shop_info))


def render_share_text(bill, shop_info=None) -> str:
    """Short plain-text receipt for messaging apps."""
    ctx = receipt_context(bill, shop_info)
    lines = [
        f"*{ctx['shop']['name']}*",
        f"Bill: {ctx['bill_ref']}",
        f"Date: {format_timestamp(_get(bill, 'created_at'), DATE_FORMAT)}",
        '',
        '*Items:*',
    ]
    for item in ctx['items']:
        lines.append(f"{item['name']} x{item['qty']} = {format_currency(item['amount'])}")
    lines += [
        '',
        f"*Total: {format_currency(ctx['total'])}*",
        f"Payment: {ctx['payment_mode']}",
        '',
        'Thank you for shopping!',
    ]
    return '\n'.join(lines)
