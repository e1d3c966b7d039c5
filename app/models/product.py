from typing import Optional
from decimal import Decimal
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from pydantic import computed_field

class DosageForm(str, Enum):
    TABLET = "Tablet"
    CAPSULE = "Capsule"
    SYRUP = "Syrup"
    INJECTION = "Injection"
    CREAM = "Cream"
    DROPS = "Drops"
    OTHER = "Other"

class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: str = Field(index=True)
    brand: str = Field(index=True)
    company: str = Field(index=True)
    strength: str
    category: str = Field(default="General", index=True)
    description: Optional[str] = None
    dosage_form: DosageForm = Field(default=DosageForm.TABLET)

    # Pricing
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)

    # Inventory
    stock: int = Field(default=0, ge=0, index=True)
    min_stock_level: int = Field(default=10)

    # Metadata
    is_active: bool = Field(default=True, index=True)
    popularity: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def stock_status(self) -> str:
        if self.stock == 0:
            return "Out of Stock"
        if self.stock <= self.min_stock_level:
            return "Low Stock"
        return "In Stock"

    @computed_field
    @property
    def display_name(self) -> str:
        return f"{self.name} {self.strength} - {self.brand}"
