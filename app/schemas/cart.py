from typing import List, Literal, Optional
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel

class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = 1

class CartItemUpdate(BaseModel):
    quantity: int

class SaveForLaterRequest(BaseModel):
    item_id: int

class MoveToCartRequest(BaseModel):
    saved_item_id: int

class CartProductInfo(BaseModel):
    """Live product state a cart line is annotated with on read."""
    id: int
    name: str
    brand: str
    company: str
    strength: str
    category: str
    price: Decimal
    stock: int
    is_active: bool
    available: bool
    max_available: int

class CartItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    price_at_time: Decimal
    line_total: Decimal
    saved_for_later: bool = False
    saved_at: Optional[datetime] = None
    added_at: datetime
    updated_at: datetime
    product: Optional[CartProductInfo] = None

class CartRead(BaseModel):
    id: Optional[int] = None
    worker_id: int
    items: List[CartItemRead] = []
    saved_items: List[CartItemRead] = []
    total_items: int = 0
    total_amount: Decimal = Decimal("0.00")
    unique_items: int = 0
    is_empty: bool = True
    last_synced_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Non-blocking messages, e.g. a price that moved while an item was saved
    notices: List[str] = []

CartChangeAction = Literal["removed", "reduced", "price_updated"]

class CartChange(BaseModel):
    item_id: int
    product_id: int
    name: str
    action: CartChangeAction
    message: str
    old_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None

class CartSyncResult(BaseModel):
    has_changes: bool
    message: str
    changes: List[CartChange] = []
    cart: CartRead

class CartSummary(BaseModel):
    total_items: int
    total_amount: Decimal
    unique_items: int
    available_items: int
    unavailable_items: int
    is_empty: bool
    last_updated: Optional[datetime] = None
