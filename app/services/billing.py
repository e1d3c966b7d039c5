import logging
import math
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple, Union
from sqlalchemy import desc, func, update
from sqlmodel import Session, select
from app.core.config import settings
from app.core.errors import (
    Forbidden,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    Unavailable,
    ValidationFailed,
)
from app.models.bill import (
    BILL_STATUS_TRANSITIONS,
    Bill,
    BillLineItem,
    BillSequence,
    BillStatus,
    PaymentMethod,
)
from app.models.worker import Worker
from app.schemas.bill import (
    BillAnalytics,
    BillItemRequest,
    BillPage,
    BillRead,
    CustomerInfo,
    SalesSummary,
    TopMedicine,
)
from app.services.cart import CartService
from app.services.catalog import CatalogStore
from app.services.pdf import BillPDFRenderer

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


class BillingService:
    """
    Checkout: turns an item list (or a worker's cart) into an immutable Bill.

    Validation runs for every line before anything is written. Stock
    decrements, the bill number, the bill insert and the worker's stats then
    share one transaction, so a failure at any step undoes the decrements.
    The source cart is left alone; clearing it is the caller's job.
    """

    def __init__(
        self,
        session: Session,
        catalog: Optional[CatalogStore] = None,
        renderer: Optional[BillPDFRenderer] = None,
    ):
        self.session = session
        self.catalog = catalog or CatalogStore(session)
        self.renderer = renderer or BillPDFRenderer()

    def generate_bill(
        self,
        worker: Worker,
        items: Iterable[Union[BillItemRequest, dict]],
        customer: Optional[Union[CustomerInfo, dict]] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        discount: Union[Decimal, float, int] = ZERO,
        notes: Optional[str] = None,
    ) -> Tuple[Bill, bytes]:
        requested = self._merge_items(items)
        discount = _money(discount)
        if discount < 0:
            raise ValidationFailed("Discount cannot be negative", discount=str(discount))

        # 1-2. Validate every line and freeze its snapshot
        lines: List[BillLineItem] = []
        for position, (product_id, quantity) in enumerate(requested.items()):
            product = self.catalog.find_product(product_id)
            if not product:
                raise NotFound(f"Medicine not found: #{product_id}", product_id=product_id)
            if not product.is_active:
                raise Unavailable(f"{product.name} is not available", product_id=product_id)
            if product.stock < quantity:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name}. "
                    f"Required: {quantity}, available: {product.stock}",
                    available=product.stock,
                    requested=quantity,
                    product_id=product_id,
                    name=product.name,
                )

            lines.append(BillLineItem(
                product_id=product.id,
                name=product.name,
                brand=product.brand,
                strength=product.strength,
                quantity=quantity,
                unit_price=product.price,
                line_total=_money(product.price * quantity),
                position=position,
            ))

        # 3. Totals
        subtotal = sum((line.line_total for line in lines), ZERO)
        tax = _money(subtotal * settings.TAX_RATE)
        total = subtotal + tax - discount
        if total <= 0:
            raise ValidationFailed(
                "Discount cannot be equal to or exceed the bill amount",
                subtotal=str(subtotal),
                tax=str(tax),
                discount=str(discount),
            )

        customer_data = customer.model_dump(exclude_none=True) if isinstance(customer, CustomerInfo) else dict(customer or {})

        # 4-6. Decrement stock, number and persist the bill, update worker stats
        try:
            for line in lines:
                if not self.catalog.update_stock(line.product_id, -line.quantity, popularity_delta=1):
                    product = self.catalog.find_product(line.product_id)
                    available = 0
                    if product:
                        self.session.refresh(product)
                        available = product.stock
                    raise InsufficientStock(
                        f"Insufficient stock for {line.name}. "
                        f"Required: {line.quantity}, available: {available}",
                        available=available,
                        requested=line.quantity,
                        product_id=line.product_id,
                        name=line.name,
                    )

            now = datetime.utcnow()
            bill = Bill(
                bill_number=self._next_bill_number(now),
                worker_id=worker.id,
                customer=customer_data,
                subtotal=subtotal,
                tax=tax,
                discount=discount,
                total_amount=total,
                payment_method=PaymentMethod(payment_method),
                status=BillStatus.COMPLETED,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            bill.items = lines
            self.session.add(bill)

            self.session.exec(
                update(Worker)
                .where(Worker.id == worker.id)
                .values(
                    total_bills=Worker.total_bills + 1,
                    total_revenue=Worker.total_revenue + total,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(bill)
        logger.info(
            f"Bill {bill.bill_number} created by worker {worker.id}: "
            f"{len(lines)} line(s), total {bill.total_amount}"
        )

        # 7. Render after commit; a rendering failure never undoes the sale
        pdf = self.renderer.render(bill, worker_name=worker.name, employee_id=worker.employee_id)
        return bill, pdf

    def generate_bill_from_cart(
        self,
        worker: Worker,
        customer: Optional[Union[CustomerInfo, dict]] = None,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        discount: Union[Decimal, float, int] = ZERO,
        notes: Optional[str] = None,
    ) -> Tuple[Bill, bytes]:
        """Bill the worker's active cart lines. The cart is not cleared."""
        lines = CartService(self.session, self.catalog).get_active_lines(worker.id)
        if not lines:
            raise ValidationFailed("Cart is empty")

        items = [BillItemRequest(product_id=line.product_id, quantity=line.quantity) for line in lines]
        return self.generate_bill(worker, items, customer, payment_method, discount, notes)

    def get_bill_history(
        self,
        actor: Worker,
        page: int = 1,
        limit: int = 20,
        status: Optional[BillStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> BillPage:
        if page < 1:
            raise ValidationFailed("Page must be 1 or greater", page=page)
        limit = min(max(limit, 1), settings.BILL_HISTORY_MAX_LIMIT)

        filters = self._date_filters(start_date, end_date)
        # Workers only see their own bills, owners see every bill
        if not actor.is_owner:
            filters.append(Bill.worker_id == actor.id)
        if status:
            filters.append(Bill.status == BillStatus(status))

        total_count = self.session.exec(select(func.count(Bill.id)).where(*filters)).one()
        bills = self.session.exec(
            select(Bill)
            .where(*filters)
            .order_by(Bill.created_at.desc(), Bill.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        return BillPage(
            bills=[BillRead.model_validate(bill) for bill in bills],
            total_count=total_count,
            page=page,
            total_pages=math.ceil(total_count / limit) if total_count else 0,
            has_more=(page - 1) * limit + len(bills) < total_count,
        )

    def get_bill(self, actor: Worker, bill_id: int) -> Bill:
        bill = self.session.get(Bill, bill_id)
        # A worker asking for someone else's bill gets the same answer as a missing one
        if not bill or (not actor.is_owner and bill.worker_id != actor.id):
            raise NotFound("Bill not found", bill_id=bill_id)
        return bill

    def render_bill(self, actor: Worker, bill_id: int) -> Tuple[Bill, bytes]:
        bill = self.get_bill(actor, bill_id)
        issuer = self.session.get(Worker, bill.worker_id)
        pdf = self.renderer.render(
            bill,
            worker_name=issuer.name if issuer else None,
            employee_id=issuer.employee_id if issuer else None,
        )
        return bill, pdf

    def update_bill_status(self, actor: Worker, bill_id: int, status: BillStatus) -> Bill:
        if not actor.is_owner:
            raise Forbidden("Only owners can change a bill's status")

        bill = self.session.get(Bill, bill_id)
        if not bill:
            raise NotFound("Bill not found", bill_id=bill_id)

        new_status = BillStatus(status)
        current = BillStatus(bill.status)
        if new_status not in BILL_STATUS_TRANSITIONS[current]:
            raise ValidationFailed(
                f"Cannot change bill status from {current.value} to {new_status.value}",
                current=current.value,
                requested=new_status.value,
            )

        bill.status = new_status
        bill.updated_at = datetime.utcnow()
        self.session.add(bill)
        self.session.commit()
        self.session.refresh(bill)

        logger.info(f"Bill {bill.bill_number}: {current.value} -> {new_status.value} by owner {actor.id}")
        return bill

    def cancel_bill(self, actor: Worker, bill_id: int) -> Bill:
        """Bills are never deleted; cancelling is a status change."""
        return self.update_bill_status(actor, bill_id, BillStatus.CANCELLED)

    def get_analytics(
        self,
        actor: Worker,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> BillAnalytics:
        if not actor.is_owner:
            raise Forbidden("Only owners can view sales analytics")

        filters = [Bill.status == BillStatus.COMPLETED] + self._date_filters(start_date, end_date)

        total_bills, revenue = self.session.exec(
            select(func.count(Bill.id), func.sum(Bill.total_amount)).where(*filters)
        ).one()
        items_sold = self.session.exec(
            select(func.sum(BillLineItem.quantity))
            .join(Bill, BillLineItem.bill_id == Bill.id)
            .where(*filters)
        ).one()

        quantity = func.sum(BillLineItem.quantity).label("total_quantity")
        rows = self.session.exec(
            select(
                BillLineItem.product_id,
                func.max(BillLineItem.name),
                func.max(BillLineItem.brand),
                quantity,
                func.sum(BillLineItem.line_total),
            )
            .join(Bill, BillLineItem.bill_id == Bill.id)
            .where(*filters)
            .group_by(BillLineItem.product_id)
            .order_by(desc("total_quantity"))
            .limit(10)
        ).all()

        revenue = _money(revenue)
        summary = SalesSummary(
            total_bills=total_bills or 0,
            total_revenue=revenue,
            average_order_value=_money(revenue / total_bills) if total_bills else ZERO,
            total_items_sold=items_sold or 0,
        )
        top = [
            TopMedicine(
                product_id=product_id,
                name=name,
                brand=brand,
                total_quantity=total_quantity,
                total_revenue=_money(line_revenue),
            )
            for product_id, name, brand, total_quantity, line_revenue in rows
        ]
        return BillAnalytics(summary=summary, top_medicines=top)

    def _merge_items(self, items: Iterable[Union[BillItemRequest, dict]]) -> "OrderedDict[int, int]":
        """Collapse repeated products into one line, keeping first-seen order."""
        merged: "OrderedDict[int, int]" = OrderedDict()
        for item in items or []:
            if isinstance(item, dict):
                item = BillItemRequest(**item)
            if item.quantity < 1:
                raise InvalidQuantity(
                    "Quantity must be at least 1",
                    product_id=item.product_id,
                    quantity=item.quantity,
                )
            merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity

        if not merged:
            raise ValidationFailed("No items provided for billing")
        return merged

    def _next_bill_number(self, now: datetime) -> str:
        """BILL-YYYYMMDD-NNN from a per-day counter row, inside the caller's transaction."""
        day = now.strftime("%Y%m%d")
        result = self.session.exec(
            update(BillSequence)
            .where(BillSequence.day == day)
            .values(last_number=BillSequence.last_number + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.add(BillSequence(day=day, last_number=1))
            self.session.flush()
            number = 1
        else:
            number = self.session.exec(
                select(BillSequence.last_number).where(BillSequence.day == day)
            ).one()
        return f"{settings.BILL_NUMBER_PREFIX}-{day}-{number:03d}"

    def _date_filters(self, start_date: Optional[date], end_date: Optional[date]) -> list:
        filters = []
        if start_date:
            filters.append(Bill.created_at >= datetime.combine(start_date, time.min))
        if end_date:
            # end date is inclusive
            filters.append(Bill.created_at < datetime.combine(end_date + timedelta(days=1), time.min))
        return filters
