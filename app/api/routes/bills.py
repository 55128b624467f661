"""Bill API routes: generation, payments and the details read path."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.schemas.bill import (
    BillDetailsResponse,
    BillGenerationRequest,
    BillGenerationResult,
    BillResponse,
    OverdueRefreshResult,
    PaymentCreate,
)
from app.services import aggregation, bill_lifecycle, bill_query
from app.services.billing_config import BillingConfig, get_billing_config

router = APIRouter(prefix="/bills", tags=["bills"])


@router.post(
    "/generate",
    response_model=BillGenerationResult,
    status_code=status.HTTP_201_CREATED,
)
def generate_bills(
    data: BillGenerationRequest,
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> BillGenerationResult:
    """Generate utility bills for a contract from meter readings.

    Already-billed readings are skipped with a warning. Per-reading
    failures are listed in ``errors`` and do not fail the batch.
    """
    return aggregation.generate_utility_bills(db, data, config)


@router.post(
    "/refresh-overdue",
    response_model=OverdueRefreshResult,
)
def refresh_overdue(
    db: Session = Depends(get_db),
) -> OverdueRefreshResult:
    """Mark bills past their due date as overdue."""
    return bill_lifecycle.refresh_overdue_statuses(db)


@router.get(
    "/{bill_id}",
    response_model=BillResponse,
)
def get_bill(
    bill_id: int,
    db: Session = Depends(get_db),
) -> BillResponse:
    """Get a bill by ID."""
    bill = bill_lifecycle.get_bill(db, bill_id)
    return BillResponse.model_validate(bill)


@router.get(
    "/{bill_id}/details",
    response_model=BillDetailsResponse,
)
def get_bill_details(
    bill_id: int,
    db: Session = Depends(get_db),
) -> BillDetailsResponse:
    """Get a bill's line items, resolving bills stored before details existed."""
    return bill_query.get_bill_details(db, bill_id)


@router.post(
    "/{bill_id}/payments",
    response_model=BillResponse,
)
def record_payment(
    bill_id: int,
    data: PaymentCreate,
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> BillResponse:
    """Record a payment against a bill."""
    bill = bill_lifecycle.record_payment(db, bill_id, data, config)
    return BillResponse.model_validate(bill)


@router.post(
    "/{bill_id}/complete",
    response_model=BillResponse,
)
def complete_bill(
    bill_id: int,
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> BillResponse:
    """Mark a settled bill as completed."""
    bill = bill_lifecycle.complete_bill(db, bill_id, config)
    return BillResponse.model_validate(bill)
