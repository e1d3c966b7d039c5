from typing import Optional
from decimal import Decimal
from datetime import datetime
from sqlmodel import Field, SQLModel

class Cart(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # One cart per worker
    worker_id: int = Field(foreign_key="worker.id", unique=True, index=True)

    # Derived from the active items, recomputed on every mutation
    total_items: int = Field(default=0, ge=0)
    total_amount: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)

    last_synced_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class CartItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    cart_id: int = Field(foreign_key="cart.id", index=True, ondelete="CASCADE")
    product_id: int = Field(index=True)

    # Cart Details
    quantity: int = Field(default=1, ge=1, le=100)
    price_at_time: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    position: int = Field(default=0)

    # Saved for later lives in the same table, flagged
    saved_for_later: bool = Field(default=False, index=True)
    saved_at: Optional[datetime] = None

    # Timestamps
    added_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
