from typing import Optional
from decimal import Decimal
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel

class WorkerRole(str, Enum):
    WORKER = "worker"
    OWNER = "owner"

class Worker(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Basic Info
    name: str
    email: str = Field(unique=True, index=True)
    phone: Optional[str] = None
    employee_id: str = Field(unique=True, index=True)
    password_hash: str

    # Access
    role: WorkerRole = Field(default=WorkerRole.WORKER)
    is_active: bool = Field(default=True)
    last_login: Optional[datetime] = None

    # Sales stats, updated by checkout
    total_bills: int = Field(default=0)
    total_revenue: Decimal = Field(default=Decimal("0.00"), max_digits=14, decimal_places=2)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_owner(self) -> bool:
        return self.role == WorkerRole.OWNER
