"""
Per-business document numbering (PO-00001, GRN-00001).
"""
from sqlalchemy.orm import Session

from app.models import Counter

PURCHASE_ORDERS = "purchaseOrders"
GRNS = "grns"


def next_number(db: Session, business_id: str, name: str) -> int:
    """Increment and return the counter inside the caller's transaction."""
    counter = (
        db.query(Counter)
        .filter(Counter.business_id == business_id, Counter.name == name)
        .with_for_update()
        .first()
    )
    if counter is None:
        counter = Counter(business_id=business_id, name=name, last_number=0)
        db.add(counter)
    counter.last_number = (counter.last_number or 0) + 1
    db.flush()
    return counter.last_number


def format_number(prefix: str, number: int) -> str:
    return f"{prefix}-{number:05d}"
