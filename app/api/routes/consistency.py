"""Data consistency API routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.schemas.consistency import ConsistencyReport, RepairRequest, RepairResult
from app.services.billing_config import BillingConfig, get_billing_config
from app.services.consistency import run_consistency_check
from app.services.repair import run_repair

router = APIRouter(prefix="/data-consistency", tags=["data-consistency"])


@router.get(
    "/check",
    response_model=ConsistencyReport,
)
def check_consistency(
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> ConsistencyReport:
    """Run a read-only consistency scan."""
    return run_consistency_check(db, config)


@router.post(
    "/repair",
    response_model=RepairResult,
)
def repair(
    data: RepairRequest,
    db: Session = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config),
) -> RepairResult:
    """Repair consistency issues.

    Without ``issue_ids`` a fresh check runs first and every issue it finds
    is repaired. Each issue is repaired in its own transaction.
    """
    return run_repair(db, config, data.issue_ids, data.options)
