from datetime import datetime, date
from typing import Optional
from clinic_pos import db

# ── Expiry thresholds (days), overridable via app config ─────────
EXPIRY_WARNING_DAYS  = 30
EXPIRY_CRITICAL_DAYS = 7


class Product(db.Model):
    """A sellable catalog item. Supplies {id, name, price} to the cart engines."""
    __tablename__ = 'products'

    id          = db.Column(db.Integer, primary_key=True)
    name        = db.Column(db.String(200), nullable=False, index=True)
    barcode     = db.Column(db.String(100), unique=True, nullable=True, index=True)
    price       = db.Column(db.Numeric(10, 2), nullable=False)
    stock       = db.Column(db.Integer, nullable=False, default=0)
    is_active   = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    batches = db.relationship('ProductBatch', backref='product', lazy='dynamic',
                              cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('stock >= 0', name='check_stock_non_negative'),
        db.CheckConstraint('price >= 0', name='check_price_non_negative'),
    )

    def sellable_batches(self):
        """
        Non-expired batches with stock left, earliest expiry first (FEFO).
        Batches without an expiry date sort last.
        """
        return (
            self.batches
            .filter(ProductBatch.is_active.is_(True), ProductBatch.quantity > 0)
            .filter(db.or_(ProductBatch.expiry_date.is_(None),
                           ProductBatch.expiry_date > date.today()))
            .order_by(
                db.case((ProductBatch.expiry_date.is_(None), 1), else_=0),
                ProductBatch.expiry_date.asc(),
            )
            .all()
        )

    def __repr__(self):
        return f"<Product {self.id} {self.name!r}>"


class ProductBatch(db.Model):
    """
    One stock lot of a product, with its own expiry date and remaining quantity.
    Offered to the medical cart as a BatchInfo whose max_qty is `quantity`.
    """
    __tablename__ = 'product_batches'

    id           = db.Column(db.Integer, primary_key=True)
    product_id   = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    batch_number = db.Column(db.String(60), nullable=False)
    expiry_date  = db.Column(db.Date, nullable=True)         # NULL = no expiry
    quantity     = db.Column(db.Integer, nullable=False, default=0)
    is_active    = db.Column(db.Boolean, nullable=False, default=True)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('quantity >= 0', name='check_batch_qty_non_negative'),
    )

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def is_expired(self) -> bool:
        return self.expiry_date is not None and self.expiry_date <= date.today()

    @property
    def days_to_expiry(self) -> Optional[int]:
        if self.expiry_date is None:
            return None
        return (self.expiry_date - date.today()).days

    def expiry_status(self, warning_days: int = EXPIRY_WARNING_DAYS,
                      critical_days: int = EXPIRY_CRITICAL_DAYS) -> str:
        """'expired' | 'critical' | 'warning' | 'ok'"""
        if self.is_expired:
            return 'expired'
        days = self.days_to_expiry
        if days is None:
            return 'ok'
        if days <= critical_days:
            return 'critical'
        if days <= warning_days:
            return 'warning'
        return 'ok'

    def to_batch_info(self, qty: int = 1):
        """This lot as offered to the cart: `qty` units, capped later at `quantity`."""
        from clinic_pos.billing.cart import BatchInfo
        return BatchInfo(
            batch_id=str(self.id),
            batch_no=self.batch_number,
            expiry_date=self.expiry_date,
            qty=qty,
            max_qty=self.quantity,
        )

    def __repr__(self):
        return f"<Batch {self.batch_number!r} P:{self.product_id} qty:{self.quantity} exp:{self.expiry_date}>"
