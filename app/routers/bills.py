from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response
from sqlmodel import Session
from app.db.session import get_session
from app.models.bill import BillStatus
from app.models.worker import Worker
from app.routers.auth import get_current_worker
from app.schemas.bill import BillAnalytics, BillCreate, BillPage, BillRead, BillStatusUpdate
from app.services.billing import BillingService

router = APIRouter()

def get_billing_service(session: Session = Depends(get_session)) -> BillingService:
    return BillingService(session)

def pdf_response(bill, pdf: bytes) -> Response:
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="bill-{bill.bill_number}.pdf"',
            "X-Bill-Id": str(bill.id),
            "X-Bill-Number": bill.bill_number,
        },
    )

@router.post("/generate")
def generate_bill(
    bill_in: BillCreate,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    """
    Create a bill and return it as a PDF.

    Without ``items`` the worker's active cart is billed. The cart is not
    cleared here; the client clears it once the bill is saved.
    """
    if bill_in.items is None:
        bill, pdf = service.generate_bill_from_cart(
            current_worker,
            customer=bill_in.customer,
            payment_method=bill_in.payment_method,
            discount=bill_in.discount,
            notes=bill_in.notes,
        )
    else:
        bill, pdf = service.generate_bill(
            current_worker,
            bill_in.items,
            customer=bill_in.customer,
            payment_method=bill_in.payment_method,
            discount=bill_in.discount,
            notes=bill_in.notes,
        )
    return pdf_response(bill, pdf)

@router.get("/history", response_model=BillPage)
def get_bill_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    status: Optional[BillStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    return service.get_bill_history(current_worker, page, limit, status, start_date, end_date)

@router.get("/analytics/summary", response_model=BillAnalytics)
def get_bill_analytics(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    return service.get_analytics(current_worker, start_date, end_date)

@router.get("/{bill_id}", response_model=BillRead)
def get_bill(
    bill_id: int,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    return BillRead.model_validate(service.get_bill(current_worker, bill_id))

@router.get("/{bill_id}/download")
def download_bill(
    bill_id: int,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    bill, pdf = service.render_bill(current_worker, bill_id)
    return pdf_response(bill, pdf)

@router.patch("/{bill_id}/status", response_model=BillRead)
def update_bill_status(
    bill_id: int,
    status_update: BillStatusUpdate,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    bill = service.update_bill_status(current_worker, bill_id, status_update.status)
    return BillRead.model_validate(bill)

@router.delete("/{bill_id}", response_model=BillRead)
def cancel_bill(
    bill_id: int,
    current_worker: Worker = Depends(get_current_worker),
    service: BillingService = Depends(get_billing_service)
):
    """Soft delete: the bill is marked Cancelled, never removed"""
    return BillRead.model_validate(service.cancel_bill(current_worker, bill_id))
