"""
clinic_pos/billing/cart.py
--------------------------
Cart state for one checkout session.

One generic CartSession holds the ordered line items, the discount and the
tax rate. The two engines differ only in how a line is identified and
whether its quantity has a ceiling:

    CartEngine       key = product_id               no ceiling
    BatchCartEngine  key = (product_id, batch_id)   ceiling = batch max_qty

Mutations never raise. An unknown key is a no-op that returns None;
every other quantity mutation returns a QtyChange so the caller can warn
the operator when a quantity was clamped to the batch stock.

The cart is kept in the Flask session under 'cart' as plain strings
(Decimal → str) and rebuilt into an engine on every request:
{
    "kind":     "retail" | "medical",
    "items":    [ {product_id, name, price, qty, [batch_id, batch_no, expiry_date, max_qty]}, ... ],
    "discount": {"amount": "0", "kind": "fixed"},
    "tax_rate": "0.18"
}
"""
from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import List, Optional

from flask import session

from clinic_pos.billing.totals import (
    ZERO, DiscountSpec, Totals, compute_totals, to_decimal,
)


CART_KEY = 'cart'


# ── Line items ────────────────────────────────────────────────────

@dataclass
class LineItem:
    """One cart row for a product. `total` is always qty × price."""
    product_id: str
    name:       str
    price:      Decimal
    qty:        int

    @property
    def key(self):
        return self.product_id

    @property
    def ceiling(self) -> Optional[int]:
        return None

    @property
    def total(self) -> Decimal:
        return self.price * self.qty

    def to_dict(self) -> dict:
        data = asdict(self)
        data['price'] = str(self.price)
        data['total'] = str(self.total)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'LineItem':
        return cls(
            product_id=str(data['product_id']),
            name=data.get('name', ''),
            price=to_decimal(data.get('price')),
            qty=int(data['qty']),
        )


@dataclass
class BatchLineItem(LineItem):
    """A cart row for one stock lot of a product. 0 < qty <= max_qty."""
    batch_id:    str
    batch_no:    str
    expiry_date: Optional[date]
    max_qty:     int

    @property
    def key(self):
        return (self.product_id, self.batch_id)

    @property
    def ceiling(self) -> Optional[int]:
        return self.max_qty

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['expiry_date'] = self.expiry_date.isoformat() if self.expiry_date else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'BatchLineItem':
        expiry = data.get('expiry_date')
        return cls(
            product_id=str(data['product_id']),
            name=data.get('name', ''),
            price=to_decimal(data.get('price')),
            qty=int(data['qty']),
            batch_id=str(data['batch_id']),
            batch_no=data.get('batch_no', ''),
            expiry_date=date.fromisoformat(expiry) if expiry else None,
            max_qty=int(data['max_qty']),
        )


@dataclass(frozen=True)
class BatchInfo:
    """A stock lot offered to the cart. `max_qty` is the lot's remaining stock."""
    batch_id:    str
    batch_no:    str
    expiry_date: Optional[date]
    qty:         int
    max_qty:     int


@dataclass(frozen=True)
class QtyChange:
    """Outcome of a quantity mutation: what was asked for vs. what was stored."""
    key:       object
    requested: int
    applied:   int

    @property
    def removed(self) -> bool:
        return self.applied <= 0

    @property
    def clamped(self) -> bool:
        return self.requested > self.applied


# ── Generic cart state ────────────────────────────────────────────

class CartSession:
    """
    Ordered line items + discount + tax rate, owned by a single caller.

    Subclasses supply the public, identity-specific operations; all
    quantity changes funnel through _set_qty so the ceiling and the
    remove-at-zero rule live in one place.
    """
    kind = 'retail'
    line_class = LineItem

    def __init__(self, tax_rate=ZERO):
        self.items: List[LineItem] = []
        self.discount = DiscountSpec()
        self.tax_rate = to_decimal(tax_rate)

    # ── Lookup ────────────────────────────────────────────────────

    def _find(self, key) -> Optional[LineItem]:
        for item in self.items:
            if item.key == key:
                return item
        return None

    def _qty_of(self, key) -> int:
        item = self._find(key)
        return item.qty if item else 0

    # ── Core mutations ────────────────────────────────────────────

    def _set_qty(self, key, requested: int) -> Optional[QtyChange]:
        item = self._find(key)
        if item is None:
            return None

        applied = requested
        if item.ceiling is not None:
            applied = min(applied, item.ceiling)

        if applied <= 0:
            self._drop(key)
            applied = 0
        else:
            item.qty = applied
        return QtyChange(key, requested, applied)

    def _insert(self, line: LineItem, requested: int) -> QtyChange:
        applied = requested
        if line.ceiling is not None:
            applied = min(applied, line.ceiling)

        if applied > 0:
            line.qty = applied
            self.items.append(line)
        else:
            applied = 0
        return QtyChange(line.key, requested, applied)

    def _drop(self, key) -> None:
        self.items = [i for i in self.items if i.key != key]

    def _increment(self, key) -> Optional[QtyChange]:
        item = self._find(key)
        if item is None:
            return None
        return self._set_qty(key, item.qty + 1)

    def _decrement(self, key) -> Optional[QtyChange]:
        item = self._find(key)
        if item is None:
            return None
        return self._set_qty(key, item.qty - 1)

    def clear_cart(self) -> None:
        """Empty the cart and reset the discount. The tax rate is an operator setting and survives."""
        self.items = []
        self.discount = DiscountSpec()

    # ── Discount / tax ────────────────────────────────────────────

    def set_discount(self, amount) -> None:
        self.discount = DiscountSpec(to_decimal(amount), self.discount.kind)

    def set_discount_type(self, kind: str) -> None:
        self.discount = DiscountSpec(self.discount.amount, kind)

    def set_tax_rate(self, rate) -> None:
        self.tax_rate = to_decimal(rate)

    # ── Derived ───────────────────────────────────────────────────

    @property
    def totals(self) -> Totals:
        return compute_totals(self.items, self.discount, self.tax_rate)

    @property
    def is_empty(self) -> bool:
        return not self.items

    # ── Serialisation ─────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            'kind':     self.kind,
            'items':    [i.to_dict() for i in self.items],
            'discount': self.discount.to_dict(),
            'tax_rate': str(self.tax_rate),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CartSession':
        cart = cls(to_decimal(data.get('tax_rate')))
        cart.items = [cls.line_class.from_dict(d) for d in data.get('items', [])]
        cart.discount = DiscountSpec.from_dict(data.get('discount'))
        return cart


# ── Plain cart ────────────────────────────────────────────────────

class CartEngine(CartSession):
    """Retail cart: one line per product, no quantity ceiling."""
    kind = 'retail'
    line_class = LineItem

    def add_item(self, product) -> QtyChange:
        """Add one unit of `product`; an existing line just gets +1."""
        key = str(product.id)
        if self._find(key) is not None:
            return self._increment(key)
        line = LineItem(
            product_id=key,
            name=product.name,
            price=to_decimal(product.price),
            qty=1,
        )
        return self._insert(line, 1)

    def update_qty(self, product_id, qty: int) -> Optional[QtyChange]:
        return self._set_qty(str(product_id), int(qty))

    def increment_qty(self, product_id) -> Optional[QtyChange]:
        return self._increment(str(product_id))

    def decrement_qty(self, product_id) -> Optional[QtyChange]:
        return self._decrement(str(product_id))

    def remove_item(self, product_id) -> None:
        self._drop(str(product_id))

    def get_item_qty(self, product_id) -> int:
        return self._qty_of(str(product_id))


# ── Batch-aware cart ──────────────────────────────────────────────

class BatchCartEngine(CartSession):
    """Medical cart: one line per (product, batch), quantity capped at the batch stock."""
    kind = 'medical'
    line_class = BatchLineItem

    @staticmethod
    def _key(product_id, batch_id) -> tuple:
        return (str(product_id), str(batch_id))

    def add_item_with_batch(self, product, batch: BatchInfo) -> QtyChange:
        """
        Add `batch.qty` units from one lot.

        An existing line grows to min(existing + batch.qty, batch.max_qty);
        a new line starts at min(batch.qty, batch.max_qty). The freshly
        offered max_qty replaces the stored one, since it is the latest
        known stock for that lot.
        """
        key = self._key(product.id, batch.batch_id)
        existing = self._find(key)
        if existing is not None:
            existing.max_qty = int(batch.max_qty)
            return self._set_qty(key, existing.qty + int(batch.qty))

        line = BatchLineItem(
            product_id=key[0],
            name=product.name,
            price=to_decimal(product.price),
            qty=0,
            batch_id=key[1],
            batch_no=batch.batch_no,
            expiry_date=batch.expiry_date,
            max_qty=int(batch.max_qty),
        )
        return self._insert(line, int(batch.qty))

    def update_qty(self, product_id, batch_id, qty: int) -> Optional[QtyChange]:
        return self._set_qty(self._key(product_id, batch_id), int(qty))

    def increment_qty(self, product_id, batch_id) -> Optional[QtyChange]:
        return self._increment(self._key(product_id, batch_id))

    def decrement_qty(self, product_id, batch_id) -> Optional[QtyChange]:
        return self._decrement(self._key(product_id, batch_id))

    def remove_item(self, product_id, batch_id) -> None:
        self._drop(self._key(product_id, batch_id))

    def get_item_qty(self, product_id, batch_id) -> int:
        return self._qty_of(self._key(product_id, batch_id))


ENGINES = {
    CartEngine.kind:      CartEngine,
    BatchCartEngine.kind: BatchCartEngine,
}


# ── Flask session storage ─────────────────────────────────────────

def load_cart(store_type: str = 'retail', default_tax_rate=ZERO) -> CartSession:
    """
    Rebuild the session cart as the engine for `store_type`.
    A missing cart, or one saved by a different engine, starts fresh.
    """
    engine = ENGINES.get(store_type, CartEngine)
    data = session.get(CART_KEY)
    if data and data.get('kind') == engine.kind:
        return engine.from_dict(data)
    return engine(default_tax_rate)


def save_cart(cart: CartSession) -> None:
    session[CART_KEY] = cart.to_dict()
    session.modified  = True
