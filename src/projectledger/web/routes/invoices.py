"""Admin routes for invoices and tax rates."""

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status

from projectledger.db.repository import User
from projectledger.services import BillingService, PaymentService
from projectledger.web.deps import get_billing_service, get_payment_service, require_admin
from projectledger.web.schemas import (
    InvoiceCreate,
    InvoiceUpdate,
    LineItemsReplace,
    StatusChange,
    TaxRateCreate,
    TaxRateUpdate,
    invoice_dict,
)

router = APIRouter(tags=["billing"])


@router.get("/invoices")
async def list_invoices(
    client_id: int | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """List invoices, newest first."""
    return [asdict(i) for i in billing.list_invoices(client_id=client_id, status=status_filter)]


@router.post("/invoices", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    body: InvoiceCreate,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Create an invoice with its line items."""
    return invoice_dict(billing.create_invoice(**body.model_dump()))


@router.post("/invoices/mark-overdue")
async def mark_overdue(
    today: date | None = Query(None),
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Flag unpaid invoices past their due date."""
    return [asdict(i) for i in billing.mark_overdue(today=today)]


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
    payments: PaymentService = Depends(get_payment_service),
):
    """Invoice with line items, payments and refunds."""
    data = invoice_dict(billing.get_invoice_with_lines(invoice_id))
    data["payments"] = [asdict(p) for p in payments.list_payments(invoice_id)]
    data["refunds"] = [asdict(r) for r in payments.list_refunds(invoice_id)]
    return data


@router.patch("/invoices/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    body: InvoiceUpdate,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Update top-level invoice fields without lifecycle checks."""
    return asdict(billing.update_invoice(invoice_id, **body.model_dump(exclude_unset=True)))


@router.post("/invoices/{invoice_id}/status")
async def transition_invoice(
    invoice_id: int,
    body: StatusChange,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Move an invoice along its lifecycle."""
    return asdict(billing.transition_invoice(invoice_id, body.status))


@router.put("/invoices/{invoice_id}/line-items")
async def replace_line_items(
    invoice_id: int,
    body: LineItemsReplace,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Replace the line items of a draft invoice."""
    result = billing.replace_line_items(
        invoice_id,
        [item.model_dump() for item in body.line_items],
        discount_amount=body.discount_amount,
        tax_rate=body.tax_rate,
    )
    return invoice_dict(result)


@router.post("/invoices/{invoice_id}/settle")
async def settle_invoice(
    invoice_id: int,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Recompute paid / partially paid from succeeded payments."""
    return asdict(billing.settle_invoice(invoice_id))


@router.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: int,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Delete an invoice."""
    billing.delete_invoice(invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/tax-rates")
async def list_tax_rates(
    active_only: bool = Query(False),
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """List tax rates."""
    return [asdict(t) for t in billing.list_tax_rates(active_only=active_only)]


@router.post("/tax-rates", status_code=status.HTTP_201_CREATED)
async def create_tax_rate(
    body: TaxRateCreate,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Create a tax rate."""
    return asdict(billing.create_tax_rate(**body.model_dump()))


@router.patch("/tax-rates/{tax_rate_id}")
async def update_tax_rate(
    tax_rate_id: int,
    body: TaxRateUpdate,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Update a tax rate."""
    return asdict(billing.update_tax_rate(tax_rate_id, **body.model_dump(exclude_unset=True)))


@router.delete("/tax-rates/{tax_rate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tax_rate(
    tax_rate_id: int,
    user: User = Depends(require_admin),
    billing: BillingService = Depends(get_billing_service),
):
    """Delete a tax rate."""
    billing.delete_tax_rate(tax_rate_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
