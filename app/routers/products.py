from typing import List, Optional
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from pydantic import BaseModel, Field
from app.db.session import get_session
from app.models.product import DosageForm, Product
from app.models.worker import Worker
from app.routers.auth import get_current_owner, get_current_worker
from app.services.catalog import CatalogStore

router = APIRouter()

class ProductCreate(BaseModel):
    name: str
    brand: str
    company: str
    strength: str
    category: str = "General"
    description: Optional[str] = None
    dosage_form: DosageForm = DosageForm.TABLET
    price: Decimal = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    min_stock_level: int = 10
    is_active: bool = True

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    company: Optional[str] = None
    strength: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    min_stock_level: Optional[int] = None
    is_active: Optional[bool] = None
    # Absolute stock level from a stock count; applied as a delta
    stock: Optional[int] = Field(default=None, ge=0)

@router.get("/", response_model=List[Product])
def read_products(
    include_inactive: bool = False,
    current_worker: Worker = Depends(get_current_worker),
    session: Session = Depends(get_session)
):
    statement = select(Product).order_by(Product.name)
    if not (include_inactive and current_worker.is_owner):
        statement = statement.where(Product.is_active == True)  # noqa: E712
    return session.exec(statement).all()

@router.get("/{product_id}", response_model=Product)
def read_product(product_id: int, current_worker: Worker = Depends(get_current_worker), session: Session = Depends(get_session)):
    product = CatalogStore(session).find_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product

@router.post("/", response_model=Product, status_code=201)
def create_product(product_in: ProductCreate, owner: Worker = Depends(get_current_owner), session: Session = Depends(get_session)):
    product = Product(**product_in.model_dump())
    session.add(product)
    session.commit()
    session.refresh(product)
    return product

@router.patch("/{product_id}", response_model=Product)
def update_product(
    product_id: int,
    product_update: ProductUpdate,
    owner: Worker = Depends(get_current_owner),
    session: Session = Depends(get_session)
):
    catalog = CatalogStore(session)
    product = catalog.find_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    changes = product_update.model_dump(exclude_unset=True, exclude_none=True)
    new_stock = changes.pop("stock", None)
    if new_stock is not None and new_stock != product.stock:
        catalog.update_stock(product_id, new_stock - product.stock)
    for field, value in changes.items():
        catalog.update_field(product_id, field, value)

    session.commit()
    session.refresh(product)
    return product
