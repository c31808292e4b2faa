"""
clinic_pos/billing/invoice.py
-----------------------------
Concurrency-safe bill number generation.

Format:  INV<YYYYMMDD><NNNN>
Example: INV202610190001, INV202610190002, … INV2026101910000

Algorithm
─────────
1. Lock today's BillSequence row with SELECT … FOR UPDATE.
2. If no row exists yet (first sale of the day), INSERT one with
   last_seq = 0, then lock it.
3. Increment last_seq and write it back.
4. Return the formatted number.

The lock is released when the caller's checkout transaction commits or
rolls back, so the counter and the Bill INSERT are atomic.
"""
from datetime import date


def format_bill_number(day: date, seq: int) -> str:
    return f"INV{day:%Y%m%d}{seq:04d}"


def generate_bill_number(db_session, today: date = None) -> str:
    """
    Generate the next bill number for `today` (defaults to the current date).

    MUST be called inside an open SQLAlchemy transaction.
    """
    from clinic_pos.billing.models import BillSequence

    today = today or date.today()

    seq_row = (
        db_session.query(BillSequence)
        .filter(BillSequence.day == today)
        .with_for_update()
        .first()
    )

    if seq_row is None:
        seq_row = BillSequence(day=today, last_seq=0)
        db_session.add(seq_row)
        db_session.flush()

        seq_row = (
            db_session.query(BillSequence)
            .filter(BillSequence.day == today)
            .with_for_update()
            .first()
        )

    seq_row.last_seq += 1
    db_session.flush()

    # Zero-pad to 4 digits; grows naturally beyond 4 on very busy days
    return format_bill_number(today, seq_row.last_seq)
