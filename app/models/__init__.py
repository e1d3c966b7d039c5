# Import all models to register them with SQLModel
from app.models.worker import Worker, WorkerRole
from app.models.product import Product, DosageForm
from app.models.cart import Cart, CartItem
from app.models.bill import Bill, BillLineItem, BillSequence, BillStatus, PaymentMethod

__all__ = [
    "Worker",
    "WorkerRole",
    "Product",
    "DosageForm",
    "Cart",
    "CartItem",
    "Bill",
    "BillLineItem",
    "BillSequence",
    "BillStatus",
    "PaymentMethod",
]
