import logging
from datetime import datetime
from typing import Any, Optional
from sqlalchemy import update
from sqlmodel import Session
from app.models.product import Product

logger = logging.getLogger(__name__)

# Columns external callers may patch through update_field. Stock is excluded,
# it only moves through update_stock.
UPDATABLE_FIELDS = {
    "name", "brand", "company", "strength", "category", "description",
    "dosage_form", "price", "min_stock_level", "is_active", "popularity",
}

class CatalogStore:
    """Product reads and guarded writes used by the cart and billing services."""

    def __init__(self, session: Session):
        self.session = session

    def find_product(self, product_id: int) -> Optional[Product]:
        return self.session.get(Product, product_id)

    def update_stock(self, product_id: int, delta: int, popularity_delta: int = 0) -> bool:
        """Atomically add ``delta`` to a product's stock.

        The UPDATE only matches while ``stock + delta >= 0``, so a decrement
        that would oversell affects no row and returns False. Does not commit;
        the caller owns the transaction.
        """
        statement = (
            update(Product)
            .where(Product.id == product_id)
            .where(Product.stock + delta >= 0)
            .values(
                stock=Product.stock + delta,
                popularity=Product.popularity + popularity_delta,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.exec(statement)
        if result.rowcount == 0:
            logger.warning(f"Stock update rejected for product {product_id} (delta {delta})")
            return False

        # Keep an already loaded instance in step with the row
        product = self.session.get(Product, product_id)
        if product is not None:
            self.session.refresh(product)
        return True

    def update_field(self, product_id: int, field: str, value: Any) -> Optional[Product]:
        if field not in UPDATABLE_FIELDS:
            raise ValueError(f"Field '{field}' cannot be updated")

        product = self.find_product(product_id)
        if not product:
            return None

        setattr(product, field, value)
        product.updated_at = datetime.utcnow()
        self.session.add(product)
        return product
