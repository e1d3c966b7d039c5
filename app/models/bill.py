from typing import List, Optional
from decimal import Decimal
from datetime import datetime
from enum import Enum
from sqlmodel import Field, Relationship, SQLModel, Column
from sqlalchemy import JSON

class PaymentMethod(str, Enum):
    CASH = "Cash"
    CARD = "Card"
    UPI = "UPI"
    NET_BANKING = "Net Banking"

class BillStatus(str, Enum):
    DRAFT = "Draft"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"

# Owner-driven status changes. Line items and totals never change.
BILL_STATUS_TRANSITIONS = {
    BillStatus.DRAFT: {BillStatus.COMPLETED, BillStatus.CANCELLED},
    BillStatus.COMPLETED: {BillStatus.CANCELLED, BillStatus.REFUNDED},
    BillStatus.CANCELLED: set(),
    BillStatus.REFUNDED: set(),
}

class BillLineItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    bill_id: int = Field(foreign_key="bill.id", index=True, ondelete="CASCADE")

    # Frozen product snapshot, no foreign key to the live catalog
    product_id: int = Field(index=True)
    name: str
    brand: str
    strength: str

    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    line_total: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    position: int = Field(default=0)

class Bill(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # e.g. BILL-20261019-007
    bill_number: str = Field(unique=True, index=True)
    worker_id: int = Field(foreign_key="worker.id", index=True)

    # Customer stored as JSON dict with keys: name, phone, email
    customer: dict = Field(default_factory=dict, sa_column=Column(JSON))

    # Amounts
    subtotal: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)
    total_amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)

    payment_method: PaymentMethod = Field(default=PaymentMethod.CASH)
    status: BillStatus = Field(default=BillStatus.COMPLETED, index=True)
    notes: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    items: List["BillLineItem"] = Relationship(
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "order_by": "BillLineItem.position",
            "lazy": "selectin",
        }
    )

class BillSequence(SQLModel, table=True):
    """Per-day counter behind bill numbers."""

    day: str = Field(primary_key=True)  # YYYYMMDD
    last_number: int = Field(default=0)
