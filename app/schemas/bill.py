from typing import List, Optional
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from app.models.bill import BillStatus, PaymentMethod

class BillItemRequest(BaseModel):
    product_id: int
    quantity: int

class CustomerInfo(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

class BillCreate(BaseModel):
    # Leave items out to bill the worker's active cart
    items: Optional[List[BillItemRequest]] = None
    customer: Optional[CustomerInfo] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    discount: Decimal = Decimal("0.00")
    notes: Optional[str] = None

class BillStatusUpdate(BaseModel):
    status: BillStatus

class BillLineItemRead(BaseModel):
    product_id: int
    name: str
    brand: str
    strength: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)

class BillRead(BaseModel):
    id: int
    bill_number: str
    worker_id: int
    customer: dict = {}
    items: List[BillLineItemRead] = []
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    status: BillStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class BillPage(BaseModel):
    bills: List[BillRead]
    total_count: int
    page: int
    total_pages: int
    has_more: bool

class SalesSummary(BaseModel):
    total_bills: int = 0
    total_revenue: Decimal = Decimal("0.00")
    average_order_value: Decimal = Decimal("0.00")
    total_items_sold: int = 0

class TopMedicine(BaseModel):
    product_id: int
    name: str
    brand: str
    total_quantity: int
    total_revenue: Decimal

class BillAnalytics(BaseModel):
    summary: SalesSummary
    top_medicines: List[TopMedicine] = Field(default_factory=list)
