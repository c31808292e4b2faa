from datetime import datetime
from decimal import Decimal
from clinic_pos import db


class BillSequence(db.Model):
    """
    One row per calendar day, holding the last-used bill sequence number.

    A counter row locked with SELECT … FOR UPDATE serialises concurrent
    checkouts, so two tills never draw the same number:

        Tx A: locks row, reads last_seq=15, writes 16, commits  ┐ serialised
        Tx B: blocks until Tx A commits, reads 16, writes 17    ┘

    The counter only advances when the sale commits, so the series has no gaps.
    """
    __tablename__ = 'bill_sequences'

    day      = db.Column(db.Date, primary_key=True)
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<BillSequence day={self.day} last_seq={self.last_seq}>"


class Bill(db.Model):
    """
    One completed transaction, assembled from the final cart state plus
    payment details. Amounts are stored as computed (unrounded totals are
    quantized to paise by the NUMERIC column).
    """
    __tablename__ = 'bills'

    id              = db.Column(db.Integer, primary_key=True)
    bill_number     = db.Column(db.String(20), unique=True, nullable=False, index=True)
    customer_name   = db.Column(db.String(200), nullable=True)
    subtotal        = db.Column(db.Numeric(12, 2), nullable=False)
    discount        = db.Column(db.Numeric(12, 2), nullable=False, default=0)   # ₹ amount applied
    discount_type   = db.Column(db.String(10),     nullable=False, default='fixed')
    discount_value  = db.Column(db.Numeric(12, 2), nullable=False, default=0)   # as entered (₹ or %)
    tax             = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_rate        = db.Column(db.Numeric(6, 4),  nullable=False, default=0)
    total           = db.Column(db.Numeric(12, 2), nullable=False)
    payment_mode    = db.Column(db.String(20),     nullable=False, default='cash')
    amount_received = db.Column(db.Numeric(12, 2), nullable=True)
    change          = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status          = db.Column(db.String(20),     nullable=False, default='paid')
    created_at      = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    items = db.relationship('BillItem', backref='bill', lazy='select',
                            cascade='all, delete-orphan', order_by='BillItem.id')

    def to_dict(self) -> dict:
        """Plain mapping of this bill, as consumed by the receipt renderer."""
        return {
            'id':              self.id,
            'bill_number':     self.bill_number,
            'customer_name':   self.customer_name,
            'items':           [i.to_dict() for i in self.items],
            'subtotal':        _dec(self.subtotal),
            'discount':        _dec(self.discount),
            'discount_type':   self.discount_type,
            'discount_value':  _dec(self.discount_value),
            'tax':             _dec(self.tax),
            'tax_rate':        _dec(self.tax_rate),
            'total':           _dec(self.total),
            'payment_mode':    self.payment_mode,
            'amount_received': _dec(self.amount_received),
            'change':          _dec(self.change),
            'status':          self.status,
            'created_at':      self.created_at,
        }

    def __repr__(self):
        return f"<Bill {self.bill_number!r} ₹{self.total}>"


class BillItem(db.Model):
    """
    One line of a Bill. Snapshots name, price and batch at the time of sale
    so later catalog edits don't alter historical receipts.
    """
    __tablename__ = 'bill_items'

    id          = db.Column(db.Integer, primary_key=True)
    bill_id     = db.Column(db.Integer, db.ForeignKey('bills.id'), nullable=False)
    product_id  = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    name        = db.Column(db.String(200), nullable=False)
    price       = db.Column(db.Numeric(10, 2), nullable=False)
    qty         = db.Column(db.Integer, nullable=False)
    total       = db.Column(db.Numeric(12, 2), nullable=False)
    batch_id    = db.Column(db.Integer, db.ForeignKey('product_batches.id'), nullable=True)
    batch_no    = db.Column(db.String(60), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    def to_dict(self) -> dict:
        return {
            'product_id':  self.product_id,
            'name':        self.name,
            'price':       _dec(self.price),
            'qty':         self.qty,
            'total':       _dec(self.total),
            'batch_id':    self.batch_id,
            'batch_no':    self.batch_no,
            'expiry_date': self.expiry_date,
        }

    def __repr__(self):
        return f"<BillItem bill={self.bill_id} product={self.product_id} qty={self.qty}>"


def _dec(value):
    return None if value is None else Decimal(str(value))
