"""Data repairer: fixes consistency issues one transaction per issue.

A failing repair is rolled back and recorded in ``errors``; it never stops
the rest of the batch. When the data needed for a confident fix is
missing the issue is skipped for manual review instead of guessed at.
"""

import logging
import time
from collections.abc import Callable, Sequence
from decimal import Decimal

from sqlalchemy.orm import Session

from app.core.errors import MetadataParseError
from app.models.bill import Bill
from app.models.bill_detail import BillDetail
from app.models.enums import IssueType, MeterType, PriceSource, Severity, UtilityCategory
from app.models.meter_reading import MeterReading
from app.schemas.consistency import (
    ConsistencyIssue,
    RepairError,
    RepairOptions,
    RepairResult,
    SkippedIssue,
)
from app.services.aggregation import refresh_bill_composition
from app.services.bill_details import detail_from_reading
from app.services.bill_lifecycle import apply_amount, expected_status, set_status
from app.services.bill_query import find_bills_for_reading, legacy_reading
from app.services.billing_config import BillingConfig
from app.services.consistency import ConsistencyChecker, overpayment_issue
from app.services.usage import round_money

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}

MANUAL_REVIEW = frozenset(
    {
        IssueType.UNPARSEABLE_METADATA,
        IssueType.OVERPAYMENT,
        IssueType.UNEVALUABLE_RECORD,
        IssueType.CHECK_ERROR,
    }
)

# Details rebuilt from a breakdown have no meter; use the category's main meter type
CATEGORY_METER = {
    UtilityCategory.ELECTRICITY: (MeterType.ELECTRICITY, "kWh"),
    UtilityCategory.WATER: (MeterType.COLD_WATER, "m³"),
    UtilityCategory.GAS: (MeterType.GAS, "m³"),
}


class RepairSkipped(Exception):
    """Raised by a repair strategy when the issue should be left alone."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


Strategy = Callable[[ConsistencyIssue], list[ConsistencyIssue]]


class DataRepairer:
    """Applies a repair strategy per issue type."""

    def __init__(self, db: Session, config: BillingConfig):
        self.db = db
        self.config = config
        self._strategies: dict[IssueType, Strategy] = {
            IssueType.MISSING_BILL_DETAILS: self.repair_missing_details,
            IssueType.DUPLICATE_BILL_DETAILS: self.repair_duplicate_details,
            IssueType.AMOUNT_INCONSISTENCY: self.repair_amount_inconsistency,
            IssueType.ORPHANED_BILLED_STATUS: self.repair_orphaned_billed_status,
            IssueType.BALANCE_INCONSISTENCY: self.repair_balance,
            IssueType.STATUS_INCONSISTENCY: self.repair_status,
            IssueType.INCORRECT_DETAIL_AMOUNT: self.repair_detail_amount,
            IssueType.INCONSISTENT_READING_STATUS: self.repair_reading_status,
        }

    def repair(
        self,
        issues: Sequence[ConsistencyIssue],
        options: RepairOptions | None = None,
    ) -> RepairResult:
        """Repair issues in severity order, each in its own transaction."""
        options = options or RepairOptions()
        started = time.perf_counter()
        result = RepairResult(total_issues=len(issues), dry_run=options.dry_run)

        for issue in sorted(issues, key=lambda i: SEVERITY_ORDER[i.severity]):
            reason = self._skip_reason(issue, options, result)
            if reason:
                result.skipped.append(SkippedIssue(issue_id=issue.id, reason=reason))
                continue

            try:
                followups = self._strategies[issue.type](issue)
                if options.dry_run:
                    self.db.rollback()
                else:
                    self.db.commit()
            except RepairSkipped as skip:
                self.db.rollback()
                result.skipped.append(SkippedIssue(issue_id=issue.id, reason=skip.reason))
                logger.info("Skipped repair of %s: %s", issue.id, skip.reason)
                continue
            except Exception as exc:  # noqa: BLE001
                self.db.rollback()
                result.errors.append(RepairError(issue_id=issue.id, message=str(exc)))
                logger.exception("Repair of %s failed", issue.id)
                continue

            result.repaired.append(issue.id)
            result.followup_issues.extend(followups)
            logger.info("Repaired %s%s", issue.id, " (dry run)" if options.dry_run else "")

        result.repaired_issues = len(result.repaired)
        result.skipped_issues = len(result.skipped)
        result.failed_issues = len(result.errors)
        result.execution_ms = round((time.perf_counter() - started) * 1000, 2)
        verb = "would be repaired" if options.dry_run else "repaired"
        result.message = (
            f"{result.repaired_issues} issue(s) {verb}, {result.skipped_issues} skipped, "
            f"{result.failed_issues} failed"
        )
        return result

    def _skip_reason(
        self,
        issue: ConsistencyIssue,
        options: RepairOptions,
        result: RepairResult,
    ) -> str | None:
        if options.skip_critical and issue.severity == Severity.CRITICAL:
            return "Critical issue skipped by request"
        if issue.type in MANUAL_REVIEW or issue.type not in self._strategies:
            return "Needs manual review"
        if options.max_repairs is not None and len(result.repaired) >= options.max_repairs:
            return "Repair limit reached"
        return None

    # -- Helpers ----------------------------------------------------------------

    def _lock_bill(self, bill_id: int | str) -> Bill:
        bill = self.db.query(Bill).filter(Bill.id == int(bill_id)).with_for_update().first()
        if bill is None:
            raise RepairSkipped(f"Bill {bill_id} no longer exists")
        return bill

    def _lock_reading(self, reading_id: int | str) -> MeterReading:
        reading = (
            self.db.query(MeterReading)
            .filter(MeterReading.id == int(reading_id))
            .with_for_update()
            .first()
        )
        if reading is None:
            raise RepairSkipped(f"Meter reading {reading_id} no longer exists")
        return reading

    def _recompute_bill(self, bill: Bill) -> list[ConsistencyIssue]:
        """Set the bill total from its details; flag any new overpayment."""
        overpaid_before = Decimal(bill.overpaid_amount or 0)
        total = sum((Decimal(d.amount) for d in bill.details), Decimal("0"))
        overpaid = apply_amount(bill, total)
        refresh_bill_composition(bill)
        if overpaid > overpaid_before:
            logger.warning(
                "Bill %s now holds %s overpayment after recalculation",
                bill.bill_number,
                overpaid,
            )
            return [overpayment_issue(bill)]
        return []

    # -- Strategies -------------------------------------------------------------

    def repair_missing_details(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        """Rebuild details from metadata reading ids, else from the breakdown.

        The bill amount is left as is; a later check reports any difference
        between it and the rebuilt details.
        """
        bill = self._lock_bill(issue.entity_id)
        if bill.details:
            raise RepairSkipped("Bill already has details")
        if legacy_reading(self.db, bill) is not None:
            raise RepairSkipped("Legacy bill; its details are resolved on read")
        try:
            metadata = bill.get_metadata()
        except MetadataParseError as exc:
            raise RepairSkipped(f"Unrecoverable, needs manual review: {exc.message}") from exc

        reading_ids = set(metadata.reading_ids) if metadata else set()
        if bill.meter_reading_id is not None:
            reading_ids.add(bill.meter_reading_id)
        readings = (
            self.db.query(MeterReading)
            .filter(MeterReading.id.in_(reading_ids))
            .order_by(MeterReading.id)
            .all()
            if reading_ids
            else []
        )

        if readings:
            for reading in readings:
                bill.details.append(detail_from_reading(reading, self.config).to_model())
                reading.is_billed = True
            logger.info("Rebuilt %d detail(s) for bill %s from readings", len(readings), bill.id)
        elif metadata is not None and metadata.utility_details is not None:
            charges = metadata.utility_details.breakdown.charges()
            if not charges:
                raise RepairSkipped("Unrecoverable, needs manual review: empty breakdown")
            for category, charge in charges.items():
                meter_type, unit = CATEGORY_METER[category]
                bill.details.append(
                    BillDetail(
                        meter_reading_id=None,
                        meter_type=meter_type,
                        meter_name=f"{category.value.capitalize()} (rebuilt)",
                        unit=unit,
                        usage=charge.usage,
                        unit_price=charge.unit_price,
                        amount=round_money(charge.amount),
                        price_source=PriceSource.METER_CONFIG,
                    )
                )
            logger.info("Rebuilt %d detail(s) for bill %s from breakdown", len(charges), bill.id)
        else:
            raise RepairSkipped("Unrecoverable, needs manual review: no readings or breakdown")

        refresh_bill_composition(bill)
        return []

    def repair_duplicate_details(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        """Keep the earliest detail per reading and recompute the bill total."""
        bill = self._lock_bill(issue.metadata.get("bill_id", issue.entity_id))
        reading_id = issue.metadata.get("meter_reading_id")
        copies = sorted(
            (d for d in bill.details if d.meter_reading_id == reading_id),
            key=lambda d: (d.created_at, d.id),
        )
        if len(copies) <= 1:
            raise RepairSkipped("Already deduplicated")

        for duplicate in copies[1:]:
            bill.details.remove(duplicate)
        self.db.flush()
        logger.info(
            "Removed %d duplicate detail(s) for reading %s from bill %s",
            len(copies) - 1,
            reading_id,
            bill.bill_number,
        )
        return self._recompute_bill(bill)

    def repair_amount_inconsistency(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        """Details are the source of truth for the bill total."""
        bill = self._lock_bill(issue.entity_id)
        if not bill.details:
            raise RepairSkipped("Bill has no details to total")
        total = round_money(sum((Decimal(d.amount) for d in bill.details), Decimal("0")))
        if abs(total - Decimal(bill.amount)) <= self.config.amount_epsilon:
            raise RepairSkipped("Bill amount already matches its details")
        return self._recompute_bill(bill)

    def repair_orphaned_billed_status(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        """Clear the billed flag only if nothing references the reading right now."""
        reading = self._lock_reading(issue.entity_id)
        if not reading.is_billed:
            raise RepairSkipped("Reading is no longer marked billed")
        has_detail = (
            self.db.query(BillDetail.id).filter(BillDetail.meter_reading_id == reading.id).first()
        )
        if has_detail is not None or find_bills_for_reading(self.db, reading.id):
            raise RepairSkipped("Reading is referenced by a bill")

        reading.is_billed = False
        return []

    def repair_balance(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        bill = self._lock_bill(issue.entity_id)
        overpaid_before = Decimal(bill.overpaid_amount or 0)
        overpaid = apply_amount(bill, Decimal(bill.amount))
        return [overpayment_issue(bill)] if overpaid > overpaid_before else []

    def repair_status(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        bill = self._lock_bill(issue.entity_id)
        target = expected_status(bill, self.config)
        if target == bill.status:
            raise RepairSkipped("Status already matches balance")
        set_status(bill, target)
        return []

    def repair_detail_amount(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        detail = (
            self.db.query(BillDetail)
            .filter(BillDetail.id == int(issue.entity_id))
            .with_for_update()
            .first()
        )
        if detail is None:
            raise RepairSkipped(f"Bill detail {issue.entity_id} no longer exists")
        expected = round_money(Decimal(detail.usage) * Decimal(detail.unit_price))
        if expected == Decimal(detail.amount):
            raise RepairSkipped("Detail amount already correct")

        detail.amount = expected
        return self._recompute_bill(self._lock_bill(detail.bill_id))

    def repair_reading_status(self, issue: ConsistencyIssue) -> list[ConsistencyIssue]:
        reading = self._lock_reading(issue.entity_id)
        if reading.is_billed or not reading.bill_details:
            raise RepairSkipped("Reading status already consistent")
        reading.is_billed = True
        return []


def run_repair(
    db: Session,
    config: BillingConfig,
    issue_ids: Sequence[str] | None = None,
    options: RepairOptions | None = None,
) -> RepairResult:
    """Run a fresh check and repair what it finds, or only the given issue ids."""
    issues = ConsistencyChecker(db, config).run().issues
    missing: list[str] = []
    if issue_ids:
        wanted = set(issue_ids)
        found = {i.id for i in issues}
        missing = [i for i in issue_ids if i not in found]
        issues = [i for i in issues if i.id in wanted]

    result = DataRepairer(db, config).repair(issues, options)
    if missing:
        result.skipped.extend(
            SkippedIssue(issue_id=i, reason="Not found in current check") for i in missing
        )
        result.total_issues += len(missing)
        result.skipped_issues = len(result.skipped)
        result.message += f"; {len(missing)} requested issue(s) not found"
    return result
