"""
clinic_pos/billing/totals.py
----------------------------
Pure totals calculation shared by both cart engines.

    subtotal       = Σ line.total
    discount       = subtotal × amount / 100   (percent)
                   = amount                    (fixed)
    after_discount = subtotal − discount        ← may go negative
    tax            = after_discount × tax_rate
    total          = max(0, after_discount + tax)

Percent discounts always apply to the raw subtotal (no compounding).
The final total is the only clamp point. Nothing is rounded here;
rounding to paise happens only when a value is displayed.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable


ZERO = Decimal('0')

DISCOUNT_FIXED   = 'fixed'
DISCOUNT_PERCENT = 'percent'
DISCOUNT_KINDS   = (DISCOUNT_FIXED, DISCOUNT_PERCENT)


def to_decimal(value) -> Decimal:
    """Coerce int/str/float/Decimal to Decimal via str(), so floats keep their printed value."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == '':
        return ZERO
    return Decimal(str(value))


@dataclass(frozen=True)
class DiscountSpec:
    """Cart-level discount: a fixed ₹ amount or a percentage of the subtotal."""
    amount: Decimal = ZERO
    kind:   str     = DISCOUNT_FIXED

    @property
    def is_percent(self) -> bool:
        return self.kind == DISCOUNT_PERCENT

    def to_dict(self) -> dict:
        return {'amount': str(self.amount), 'kind': self.kind}

    @classmethod
    def from_dict(cls, data) -> 'DiscountSpec':
        if not data:
            return cls()
        return cls(to_decimal(data.get('amount')), data.get('kind') or DISCOUNT_FIXED)


@dataclass(frozen=True)
class Totals:
    """Derived cart summary. Recomputed on every read, never stored."""
    subtotal:   Decimal
    discount:   Decimal
    tax:        Decimal
    total:      Decimal
    item_count: int

    def to_dict(self) -> dict:
        return {
            'subtotal':   str(self.subtotal),
            'discount':   str(self.discount),
            'tax':        str(self.tax),
            'total':      str(self.total),
            'item_count': self.item_count,
        }


def compute_totals(items: Iterable, discount: DiscountSpec = None,
                   tax_rate=ZERO) -> Totals:
    """
    Compute totals for any sequence of line items exposing `.total` and `.qty`.

    Negative discounts and tax rates are accepted as-is and flow through
    the formulas; only the final total is floored at zero.
    """
    discount = discount or DiscountSpec()
    items    = list(items)

    subtotal   = sum((to_decimal(i.total) for i in items), ZERO)
    item_count = sum(int(i.qty) for i in items)

    amount = to_decimal(discount.amount)
    if discount.is_percent:
        discount_amount = subtotal * amount / Decimal('100')
    else:
        discount_amount = amount

    after_discount = subtotal - discount_amount
    tax_amount     = after_discount * to_decimal(tax_rate)

    return Totals(
        subtotal=subtotal,
        discount=discount_amount,
        tax=tax_amount,
        total=max(ZERO, after_discount + tax_amount),
        item_count=item_count,
    )
