"""Admin and processor-callback routes for payments and refunds."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, status

from projectledger.db.repository import User
from projectledger.services import PaymentService
from projectledger.web.deps import get_payment_service, require_admin
from projectledger.web.schemas import (
    PaymentCreate,
    PaymentStatusUpdate,
    RefundCreate,
    RefundStatusUpdate,
)

router = APIRouter(tags=["payments"])


@router.post("/payments", status_code=status.HTTP_201_CREATED)
async def create_payment(
    body: PaymentCreate,
    user: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Record a payment."""
    return asdict(payments.create_payment(**body.model_dump()))


@router.get("/payments/{payment_id}")
async def get_payment(
    payment_id: int,
    user: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Get a payment."""
    return asdict(payments.get_payment(payment_id))


@router.post("/payments/{payment_id}/status")
async def update_payment_status(
    payment_id: int,
    body: PaymentStatusUpdate,
    user: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Apply a processor status to a payment."""
    return asdict(
        payments.update_payment_status(
            payment_id, body.status, processor_charge_id=body.processor_charge_id
        )
    )


@router.post("/refunds", status_code=status.HTTP_201_CREATED)
async def create_refund(
    body: RefundCreate,
    user: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Record a refund."""
    return asdict(payments.create_refund(**body.model_dump()))


@router.get("/refunds/{refund_id}")
async def get_refund(
    refund_id: int,
    user: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Get a refund."""
    return asdict(payments.get_refund(refund_id))


@router.post("/refunds/{refund_id}/status")
async def update_refund_status(
    refund_id: int,
    body: RefundStatusUpdate,
    user: User = Depends(require_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Apply a processor status to a refund."""
    return asdict(
        payments.update_refund_status(
            refund_id, body.status, processor_refund_id=body.processor_refund_id
        )
    )
