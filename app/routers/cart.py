from fastapi import APIRouter, Depends
from sqlmodel import Session
from app.db.session import get_session
from app.models.worker import Worker
from app.routers.auth import get_current_worker
from app.schemas.cart import (
    CartItemCreate,
    CartItemUpdate,
    CartRead,
    CartSummary,
    CartSyncResult,
    MoveToCartRequest,
    SaveForLaterRequest,
)
from app.services.cart import CartService

router = APIRouter()

def get_cart_service(session: Session = Depends(get_session)) -> CartService:
    return CartService(session)

@router.get("/", response_model=CartRead)
def get_cart(current_worker: Worker = Depends(get_current_worker), service: CartService = Depends(get_cart_service)):
    """Get the worker's cart, annotated with current stock"""
    return service.get_cart(current_worker.id)

@router.get("/summary", response_model=CartSummary)
def get_cart_summary(current_worker: Worker = Depends(get_current_worker), service: CartService = Depends(get_cart_service)):
    return service.get_summary(current_worker.id)

@router.post("/add", response_model=CartRead)
def add_to_cart(
    cart_item: CartItemCreate,
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    """Add item to cart, merging with an existing line for the same medicine"""
    return service.add_item(current_worker.id, cart_item.product_id, cart_item.quantity)

@router.put("/update/{item_id}", response_model=CartRead)
def update_cart_item(
    item_id: int,
    cart_update: CartItemUpdate,
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    """Update cart item quantity"""
    return service.update_quantity(current_worker.id, item_id, cart_update.quantity)

@router.delete("/remove/{item_id}", response_model=CartRead)
def remove_from_cart(
    item_id: int,
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    """Remove item from cart"""
    return service.remove_item(current_worker.id, item_id)

@router.delete("/clear", response_model=CartRead)
def clear_cart(
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    """Clear entire cart, saved items included"""
    return service.clear_cart(current_worker.id)

@router.post("/sync", response_model=CartSyncResult)
def sync_cart(
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    """Reconcile prices and availability with the catalog"""
    return service.sync_cart(current_worker.id)

@router.post("/save-for-later", response_model=CartRead)
def save_for_later(
    request: SaveForLaterRequest,
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    return service.save_for_later(current_worker.id, request.item_id)

@router.post("/move-to-cart", response_model=CartRead)
def move_to_cart(
    request: MoveToCartRequest,
    current_worker: Worker = Depends(get_current_worker),
    service: CartService = Depends(get_cart_service)
):
    return service.move_to_cart(current_worker.id, request.saved_item_id)
