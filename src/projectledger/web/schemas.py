"""Pydantic schemas for request bodies, and JSON shaping for responses."""

from dataclasses import asdict
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from projectledger.processing.progress import PhaseProgress, ProjectProgress
from projectledger.services.billing_service import InvoiceWithLines
from projectledger.services.tracking_service import ProjectTree


class ProjectCreate(BaseModel):
    """New project."""

    title: str
    description: str | None = None
    status: str = "draft"
    client_id: int | None = None
    notifications_enabled: bool = True


class ProjectUpdate(BaseModel):
    """Partial project update."""

    title: str | None = None
    description: str | None = None
    status: str | None = None
    client_id: int | None = None
    notifications_enabled: bool | None = None


class PhaseCreate(BaseModel):
    """New phase; omitted sort_order appends it."""

    name: str
    description: str | None = ""
    sort_order: int | None = None
    status: str = "pending"
    estimated_start_date: date | None = None
    estimated_end_date: date | None = None
    notify_on_complete: bool = True
    estimated_cost: int | None = None


class PhaseUpdate(BaseModel):
    """Partial phase update."""

    name: str | None = None
    description: str | None = None
    status: str | None = None
    estimated_start_date: date | None = None
    estimated_end_date: date | None = None
    actual_start_date: date | None = None
    actual_end_date: date | None = None
    notify_on_complete: bool | None = None
    estimated_cost: int | None = None


class TaskCreate(BaseModel):
    """New task; omitted sort_order appends it."""

    name: str
    description: str | None = None
    completion_percentage: float = 0
    sort_order: int | None = None
    developer_notes: str | None = None
    estimated_cost: int | None = None


class TaskUpdate(BaseModel):
    """Partial task update."""

    name: str | None = None
    description: str | None = None
    completion_percentage: float | None = None
    developer_notes: str | None = None
    estimated_cost: int | None = None


class CompletionUpdate(BaseModel):
    completion_percentage: float


class ReorderRequest(BaseModel):
    """Full ordering of sibling ids."""

    ordered_ids: list[int] = Field(default_factory=list)


class AttachmentCreate(BaseModel):
    file_url: str
    file_type: str
    file_name: str
    phase_id: int | None = None
    task_id: int | None = None


class PreferenceRequest(BaseModel):
    """Public opt-in for phase-completion email."""

    email: str
    opted_in: bool = True


class LineItemIn(BaseModel):
    """Invoice line item; amounts in cents."""

    description: str
    quantity: float | None = 1
    unit_price: int
    total: int | None = None
    phase_id: int | None = None
    task_id: int | None = None


class InvoiceCreate(BaseModel):
    """New invoice with its line items; amounts in cents."""

    client_id: int
    line_items: list[LineItemIn]
    project_id: int | None = None
    invoice_number: str | None = None
    status: str = "draft"
    subtotal: int | None = None
    discount_amount: int = 0
    tax_amount: int | None = None
    tax_rate: float | None = None
    total: int | None = None
    currency: str | None = None
    due_date: date | None = None
    notes: str | None = None


class InvoiceUpdate(BaseModel):
    """Partial invoice update (status is not lifecycle-checked)."""

    project_id: int | None = None
    status: str | None = None
    subtotal: int | None = None
    discount_amount: int | None = None
    tax_amount: int | None = None
    total: int | None = None
    currency: str | None = None
    due_date: date | None = None
    notes: str | None = None


class LineItemsReplace(BaseModel):
    line_items: list[LineItemIn]
    discount_amount: int | None = None
    tax_rate: float | None = None


class StatusChange(BaseModel):
    status: str


class PaymentCreate(BaseModel):
    """Payment reported by the processor; amount in cents."""

    invoice_id: int
    amount: int
    currency: str
    status: str = "pending"
    processor_payment_intent_id: str | None = None
    processor_charge_id: str | None = None


class PaymentStatusUpdate(BaseModel):
    status: str
    processor_charge_id: str | None = None


class RefundCreate(BaseModel):
    """Refund against a payment; amount in cents."""

    payment_id: int
    invoice_id: int
    amount: int
    reason: str | None = None
    processor_refund_id: str | None = None
    status: str = "pending"


class RefundStatusUpdate(BaseModel):
    status: str
    processor_refund_id: str | None = None


class TaxRateCreate(BaseModel):
    name: str
    rate: float
    country: str | None = None
    state: str | None = None
    is_active: bool = True


class TaxRateUpdate(BaseModel):
    name: str | None = None
    rate: float | None = None
    country: str | None = None
    state: str | None = None
    is_active: bool | None = None


def progress_dict(progress: ProjectProgress) -> dict[str, Any]:
    return {
        "total_phases": progress.total_phases,
        "completed_phases": progress.completed_phases,
        "in_progress_phases": progress.in_progress_phases,
        "completion_percentage": progress.completion_percentage,
    }


def phase_dict(item: PhaseProgress) -> dict[str, Any]:
    """Phase with nested tasks, attachments and its roll-up."""
    return {
        **asdict(item.phase),
        "completion_percentage": item.completion_percentage,
        "is_complete": item.is_complete,
        "tasks": [asdict(t) for t in item.tasks],
        "attachments": [asdict(a) for a in item.attachments],
    }


def project_tree_dict(tree: ProjectTree) -> dict[str, Any]:
    """Public tracking page payload."""
    return {
        "project": asdict(tree.project),
        "tracking_code": tree.code,
        "progress": progress_dict(tree.progress),
        "phases": [phase_dict(p) for p in tree.phases],
        "attachments": [asdict(a) for a in tree.project_attachments],
    }


def invoice_dict(item: InvoiceWithLines) -> dict[str, Any]:
    return {**asdict(item.invoice), "line_items": [asdict(li) for li in item.line_items]}
