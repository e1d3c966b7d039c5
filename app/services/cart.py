import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select, delete
from app.core.config import settings
from app.core.errors import InsufficientStock, InvalidQuantity, NotFound, Unavailable
from app.models.cart import Cart, CartItem
from app.models.product import Product
from app.schemas.cart import (
    CartChange,
    CartItemRead,
    CartProductInfo,
    CartRead,
    CartSummary,
    CartSyncResult,
)
from app.services.catalog import CatalogStore

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")


def format_price(amount: Decimal) -> str:
    return f"{settings.CURRENCY_SYMBOL}{amount:.2f}"


def _is_listed(product: Optional[Product]) -> bool:
    # Lines for missing, inactive or sold-out products are hidden and never billed
    return product is not None and product.is_active and product.stock > 0


class CartService:
    """
    One persisted cart per worker, kept consistent with the live catalog.

    Totals are never adjusted incrementally: every mutation rescans the
    active items and rewrites ``total_items`` / ``total_amount``. Every check
    runs before the first write and any failure rolls the session back, so a
    rejected operation leaves the stored cart as it was.

    Stock checks read the product once per call and take no lock. Two
    workers adding the last unit at the same time can both succeed; the
    checkout's guarded stock decrement is what prevents overselling. Two
    first adds for the same worker race on the cart's unique ``worker_id``;
    the loser rolls back and retries against the winner's cart.
    """

    def __init__(self, session: Session, catalog: Optional[CatalogStore] = None):
        self.session = session
        self.catalog = catalog or CatalogStore(session)

    # Queries

    def get_cart(self, worker_id: int) -> CartRead:
        """Cart view annotated with current stock; unsellable lines are hidden, not deleted."""
        cart = self._find_cart(worker_id)
        if not cart:
            return CartRead(worker_id=worker_id)
        return self._build_view(cart)

    def get_summary(self, worker_id: int) -> CartSummary:
        cart = self._find_cart(worker_id)
        items = self._items(cart.id) if cart else []
        if not items:
            return CartSummary(
                total_items=0,
                total_amount=ZERO,
                unique_items=0,
                available_items=0,
                unavailable_items=0,
                is_empty=True,
                last_updated=cart.updated_at if cart else None,
            )

        available = 0
        for item in items:
            product = self.catalog.find_product(item.product_id)
            if product and product.is_active and product.stock >= item.quantity:
                available += 1

        return CartSummary(
            total_items=cart.total_items,
            total_amount=cart.total_amount,
            unique_items=len(items),
            available_items=available,
            unavailable_items=len(items) - available,
            is_empty=False,
            last_updated=cart.updated_at,
        )

    def get_active_lines(self, worker_id: int) -> List[CartItem]:
        """Active lines the cart view shows, i.e. the ones that can be billed."""
        cart = self._find_cart(worker_id)
        if not cart:
            return []
        return [
            item for item in self._items(cart.id)
            if _is_listed(self.catalog.find_product(item.product_id))
        ]

    # Commands

    def add_item(self, worker_id: int, product_id: int, quantity: int = 1) -> CartRead:
        """Add a product, merging into an existing line for the same product."""
        try:
            return self._add_item(worker_id, product_id, quantity)
        except IntegrityError:
            # A concurrent first add created the worker's cart; retry against it
            logger.warning(f"Worker {worker_id}: cart created concurrently, retrying add")
            return self._add_item(worker_id, product_id, quantity)

    def _add_item(self, worker_id: int, product_id: int, quantity: int) -> CartRead:
        self._check_quantity(quantity)
        product = self.catalog.find_product(product_id)
        if not product:
            raise NotFound("Medicine not found", product_id=product_id)
        if not product.is_active:
            raise Unavailable("Medicine is not available", product_id=product_id)

        cart = self._find_cart(worker_id)
        existing = self._find_line(cart.id, product_id) if cart else None
        current = existing.quantity if existing else 0
        new_quantity = current + quantity

        if new_quantity > product.stock:
            can_add = max(product.stock - current, 0)
            if existing:
                message = f"Cannot add {quantity} more items. Maximum available: {can_add}"
            else:
                message = f"Insufficient stock. Only {product.stock} items available"
            logger.warning(f"Worker {worker_id}: add of product {product_id} rejected, {message}")
            raise InsufficientStock(
                message,
                available=product.stock,
                requested=new_quantity,
                product_id=product_id,
                can_add=can_add,
            )

        if new_quantity > settings.MAX_ITEM_QUANTITY:
            raise InvalidQuantity(
                f"Quantity cannot exceed {settings.MAX_ITEM_QUANTITY} "
                f"(already {current} in cart)",
                quantity=new_quantity,
            )

        now = datetime.utcnow()
        with self._transaction():
            if cart is None:
                cart = self._create_cart(worker_id, now)

            if existing:
                existing.quantity = new_quantity
                existing.price_at_time = product.price
                existing.updated_at = now
                self.session.add(existing)
            else:
                self.session.add(CartItem(
                    cart_id=cart.id,
                    product_id=product_id,
                    quantity=quantity,
                    price_at_time=product.price,
                    position=self._next_position(cart.id, saved=False),
                    added_at=now,
                    updated_at=now,
                ))

            self._recalculate(cart, now)

        logger.info(f"Worker {worker_id}: product {product_id} x{quantity} added to cart {cart.id}")
        return self._build_view(cart)

    def update_quantity(self, worker_id: int, item_id: int, quantity: int) -> CartRead:
        """Set a line's quantity. Zero is rejected; removal is its own operation."""
        self._check_quantity(quantity)
        cart = self._require_cart(worker_id)
        item = self._require_line(cart.id, item_id, saved=False)

        product = self.catalog.find_product(item.product_id)
        if not product or not product.is_active:
            raise Unavailable("Medicine is no longer available", product_id=item.product_id)
        if product.stock < quantity:
            raise InsufficientStock(
                f"Insufficient stock. Only {product.stock} items available",
                available=product.stock,
                requested=quantity,
                product_id=product.id,
            )

        now = datetime.utcnow()
        with self._transaction():
            item.quantity = quantity
            item.updated_at = now
            self.session.add(item)
            self._recalculate(cart, now)

        logger.info(f"Worker {worker_id}: cart item {item_id} set to {quantity}")
        return self._build_view(cart)

    def remove_item(self, worker_id: int, item_id: int) -> CartRead:
        cart = self._require_cart(worker_id)
        item = self._require_line(cart.id, item_id, saved=False)

        now = datetime.utcnow()
        with self._transaction():
            self.session.delete(item)
            self._recalculate(cart, now)

        logger.info(f"Worker {worker_id}: cart item {item_id} removed")
        return self._build_view(cart)

    def save_for_later(self, worker_id: int, item_id: int) -> CartRead:
        cart = self._require_cart(worker_id)
        item = self._require_line(cart.id, item_id, saved=False)
        saved_twin = self._find_line(cart.id, item.product_id, saved=True)

        if saved_twin and saved_twin.quantity + item.quantity > settings.MAX_ITEM_QUANTITY:
            raise InvalidQuantity(
                f"Saved quantity cannot exceed {settings.MAX_ITEM_QUANTITY}",
                quantity=saved_twin.quantity + item.quantity,
            )

        now = datetime.utcnow()
        with self._transaction():
            if saved_twin:
                saved_twin.quantity += item.quantity
                saved_twin.saved_at = now
                saved_twin.updated_at = now
                self.session.add(saved_twin)
                self.session.delete(item)
            else:
                item.saved_for_later = True
                item.saved_at = now
                item.updated_at = now
                item.position = self._next_position(cart.id, saved=True)
                self.session.add(item)
            self._recalculate(cart, now)

        logger.info(f"Worker {worker_id}: cart item {item_id} saved for later")
        return self._build_view(cart)

    def move_to_cart(self, worker_id: int, saved_item_id: int) -> CartRead:
        """Bring a saved line back, re-checked against current stock and price."""
        cart = self._require_cart(worker_id)
        saved = self._find_item(cart.id, saved_item_id, saved=True)
        if not saved:
            raise NotFound("Saved item not found", item_id=saved_item_id)

        product = self.catalog.find_product(saved.product_id)
        if not product or not product.is_active:
            raise Unavailable("Medicine is no longer available", product_id=saved.product_id)

        existing = self._find_line(cart.id, saved.product_id)
        new_quantity = saved.quantity + (existing.quantity if existing else 0)
        if product.stock < new_quantity:
            raise InsufficientStock(
                f"Insufficient stock. Only {product.stock} items available",
                available=product.stock,
                requested=new_quantity,
                product_id=product.id,
            )
        if new_quantity > settings.MAX_ITEM_QUANTITY:
            raise InvalidQuantity(
                f"Quantity cannot exceed {settings.MAX_ITEM_QUANTITY}",
                quantity=new_quantity,
            )

        notices = []
        if product.price != saved.price_at_time:
            notices.append(
                f"Price of {product.name} changed from {format_price(saved.price_at_time)} "
                f"to {format_price(product.price)} while it was saved"
            )

        now = datetime.utcnow()
        with self._transaction():
            if existing:
                existing.quantity = new_quantity
                existing.price_at_time = product.price
                existing.updated_at = now
                self.session.add(existing)
                self.session.delete(saved)
            else:
                saved.saved_for_later = False
                saved.saved_at = None
                saved.price_at_time = product.price
                saved.position = self._next_position(cart.id, saved=False)
                saved.updated_at = now
                self.session.add(saved)
            self._recalculate(cart, now)

        logger.info(f"Worker {worker_id}: saved item {saved_item_id} moved back to cart")
        return self._build_view(cart, notices=notices)

    def clear_cart(self, worker_id: int) -> CartRead:
        """Empty both lists. The cart row itself is kept."""
        cart = self._require_cart(worker_id)

        now = datetime.utcnow()
        with self._transaction():
            self.session.exec(delete(CartItem).where(CartItem.cart_id == cart.id))
            cart.last_synced_at = now
            self._recalculate(cart, now)

        logger.info(f"Worker {worker_id}: cart {cart.id} cleared")
        return self._build_view(cart)

    def sync_cart(self, worker_id: int) -> CartSyncResult:
        """
        Reconcile active lines with the catalog.

        Lines whose product is gone, inactive or out of stock are removed,
        quantities above current stock are clamped down and stale price
        snapshots are refreshed. Nothing is ever increased or re-added, and
        sync itself never fails on catalog state.
        """
        cart = self._find_cart(worker_id)
        if not cart:
            return CartSyncResult(
                has_changes=False,
                message="Cart is empty",
                cart=CartRead(worker_id=worker_id),
            )

        changes: List[CartChange] = []
        now = datetime.utcnow()
        with self._transaction():
            for item in self._items(cart.id):
                product = self.catalog.find_product(item.product_id)

                if not _is_listed(product):
                    name = product.name if product else f"Medicine #{item.product_id}"
                    changes.append(CartChange(
                        item_id=item.id,
                        product_id=item.product_id,
                        name=name,
                        action="removed",
                        message=f"{name} is no longer available and was removed",
                        old_quantity=item.quantity,
                        new_quantity=0,
                    ))
                    self.session.delete(item)
                    continue

                touched = False
                if product.stock < item.quantity:
                    changes.append(CartChange(
                        item_id=item.id,
                        product_id=product.id,
                        name=product.name,
                        action="reduced",
                        message=(
                            f"Quantity of {product.name} reduced from {item.quantity} "
                            f"to {product.stock} (insufficient stock)"
                        ),
                        old_quantity=item.quantity,
                        new_quantity=product.stock,
                    ))
                    item.quantity = product.stock
                    touched = True

                if product.price != item.price_at_time:
                    changes.append(CartChange(
                        item_id=item.id,
                        product_id=product.id,
                        name=product.name,
                        action="price_updated",
                        message=(
                            f"Price of {product.name} changed from "
                            f"{format_price(item.price_at_time)} to {format_price(product.price)}"
                        ),
                        old_price=item.price_at_time,
                        new_price=product.price,
                    ))
                    item.price_at_time = product.price
                    touched = True

                if touched:
                    item.updated_at = now
                    self.session.add(item)

            cart.last_synced_at = now
            self._recalculate(cart, now)

        has_changes = bool(changes)
        if has_changes:
            logger.info(f"Worker {worker_id}: cart {cart.id} synced with {len(changes)} change(s)")

        return CartSyncResult(
            has_changes=has_changes,
            message="Cart has been updated" if has_changes else "Cart is up to date",
            changes=changes,
            cart=self._build_view(cart),
        )

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete carts untouched for longer than the TTL. Returns how many went."""
        now = now or datetime.utcnow()
        expired = self.session.exec(select(Cart).where(Cart.expires_at < now)).all()
        if not expired:
            return 0

        with self._transaction():
            for cart in expired:
                self.session.exec(delete(CartItem).where(CartItem.cart_id == cart.id))
                self.session.delete(cart)

        logger.info(f"Purged {len(expired)} expired cart(s)")
        return len(expired)

    # Internals

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _check_quantity(self, quantity: int) -> None:
        limit = settings.MAX_ITEM_QUANTITY
        if not isinstance(quantity, int) or isinstance(quantity, bool) or not 1 <= quantity <= limit:
            raise InvalidQuantity(f"Quantity must be between 1 and {limit}", quantity=quantity)

    def _find_cart(self, worker_id: int) -> Optional[Cart]:
        return self.session.exec(select(Cart).where(Cart.worker_id == worker_id)).first()

    def _require_cart(self, worker_id: int) -> Cart:
        cart = self._find_cart(worker_id)
        if not cart:
            raise NotFound("Cart not found")
        return cart

    def _create_cart(self, worker_id: int, now: datetime) -> Cart:
        cart = Cart(
            worker_id=worker_id,
            last_synced_at=now,
            expires_at=now + timedelta(days=settings.CART_TTL_DAYS),
            created_at=now,
            updated_at=now,
        )
        self.session.add(cart)
        self.session.flush()
        logger.info(f"Created cart {cart.id} for worker {worker_id}")
        return cart

    def _items(self, cart_id: int, saved: bool = False) -> List[CartItem]:
        return self.session.exec(
            select(CartItem)
            .where(CartItem.cart_id == cart_id, CartItem.saved_for_later == saved)
            .order_by(CartItem.position, CartItem.id)
        ).all()

    def _find_item(self, cart_id: int, item_id: int, saved: bool) -> Optional[CartItem]:
        return self.session.exec(
            select(CartItem).where(
                CartItem.id == item_id,
                CartItem.cart_id == cart_id,
                CartItem.saved_for_later == saved,
            )
        ).first()

    def _require_line(self, cart_id: int, item_id: int, saved: bool) -> CartItem:
        item = self._find_item(cart_id, item_id, saved)
        if not item:
            raise NotFound("Item not found in cart", item_id=item_id)
        return item

    def _find_line(self, cart_id: int, product_id: int, saved: bool = False) -> Optional[CartItem]:
        return self.session.exec(
            select(CartItem).where(
                CartItem.cart_id == cart_id,
                CartItem.product_id == product_id,
                CartItem.saved_for_later == saved,
            )
        ).first()

    def _next_position(self, cart_id: int, saved: bool) -> int:
        highest = self.session.exec(
            select(func.max(CartItem.position)).where(
                CartItem.cart_id == cart_id,
                CartItem.saved_for_later == saved,
            )
        ).one()
        return 0 if highest is None else highest + 1

    def _recalculate(self, cart: Cart, now: datetime) -> None:
        """Rewrite totals from the active lines and push the expiry forward."""
        items = self._items(cart.id)
        cart.total_items = sum(item.quantity for item in items)
        cart.total_amount = sum(
            (item.price_at_time * item.quantity for item in items), ZERO
        ).quantize(CENTS)
        cart.updated_at = now
        cart.expires_at = now + timedelta(days=settings.CART_TTL_DAYS)
        self.session.add(cart)

    def _item_view(self, item: CartItem, product: Optional[Product]) -> CartItemRead:
        info = None
        if product:
            info = CartProductInfo(
                id=product.id,
                name=product.name,
                brand=product.brand,
                company=product.company,
                strength=product.strength,
                category=product.category,
                price=product.price,
                stock=product.stock,
                is_active=product.is_active,
                available=product.is_active and product.stock >= item.quantity,
                max_available=min(product.stock, settings.MAX_ITEM_QUANTITY),
            )
        return CartItemRead(
            id=item.id,
            product_id=item.product_id,
            quantity=item.quantity,
            price_at_time=item.price_at_time,
            line_total=(item.price_at_time * item.quantity).quantize(CENTS),
            saved_for_later=item.saved_for_later,
            saved_at=item.saved_at,
            added_at=item.added_at,
            updated_at=item.updated_at,
            product=info,
        )

    def _build_view(self, cart: Cart, notices: Optional[List[str]] = None) -> CartRead:
        visible = []
        for item in self._items(cart.id):
            product = self.catalog.find_product(item.product_id)
            if not _is_listed(product):
                continue
            visible.append(self._item_view(item, product))

        saved = [
            self._item_view(item, self.catalog.find_product(item.product_id))
            for item in self._items(cart.id, saved=True)
        ]

        return CartRead(
            id=cart.id,
            worker_id=cart.worker_id,
            items=visible,
            saved_items=saved,
            total_items=sum(line.quantity for line in visible),
            total_amount=sum((line.line_total for line in visible), ZERO).quantize(CENTS),
            unique_items=len(visible),
            is_empty=not visible,
            last_synced_at=cart.last_synced_at,
            expires_at=cart.expires_at,
            updated_at=cart.updated_at,
            notices=notices or [],
        )
