"""Consistency checker: read-only scan for drift between bills, details and readings.

Each check runs in isolation. A record that cannot be evaluated is
reported as an ``UNEVALUABLE_RECORD`` issue and the scan goes on; a check
that fails as a whole becomes a CRITICAL ``CHECK_ERROR`` issue and the
remaining checks still run.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import MetadataParseError
from app.models.bill import Bill
from app.models.bill_detail import BillDetail
from app.models.enums import BillStatus, BillType, IssueType, Severity
from app.models.meter_reading import MeterReading
from app.schemas.consistency import (
    ConsistencyCheck,
    ConsistencyIssue,
    ConsistencyReport,
    ReportSummary,
)
from app.services.bill_lifecycle import expected_status
from app.services.bill_query import is_legacy_bill
from app.services.billing_config import BillingConfig
from app.services.usage import round_money

logger = logging.getLogger(__name__)

# Errors from one malformed row; anything else fails the whole check
RECORD_ERRORS = (ArithmeticError, AttributeError, KeyError, TypeError, ValueError)

R = TypeVar("R", Bill, BillDetail, MeterReading)

SEVERITY_COUNTERS = {
    Severity.CRITICAL: "critical_issues",
    Severity.HIGH: "high_issues",
    Severity.MEDIUM: "medium_issues",
    Severity.LOW: "low_issues",
}


def issue_id(issue_type: IssueType, entity_type: str, *keys: int | str) -> str:
    """Deterministic issue id, e.g. ``amount_inconsistency_bill_12``."""
    suffix = "_".join(str(k) for k in keys)
    return f"{issue_type.value.lower()}_{entity_type.lower()}_{suffix}"


def overpayment_issue(bill: Bill) -> ConsistencyIssue:
    """Report money received beyond a bill's amount."""
    return ConsistencyIssue(
        id=issue_id(IssueType.OVERPAYMENT, "BILL", bill.id),
        type=IssueType.OVERPAYMENT,
        severity=Severity.LOW,
        entity_type="BILL",
        entity_id=str(bill.id),
        description=(
            f"Bill {bill.bill_number} has {bill.overpaid_amount} received beyond "
            f"its amount of {bill.amount}"
        ),
        suggested_fix="manual_review",
        metadata={
            "amount": str(bill.amount),
            "received_amount": str(bill.received_amount),
            "overpaid_amount": str(bill.overpaid_amount),
        },
    )


class ConsistencyChecker:
    """Runs every consistency check and aggregates a report."""

    def __init__(self, db: Session, config: BillingConfig):
        self.db = db
        self.config = config

    def run(self) -> ConsistencyReport:
        """Run a full consistency scan. Never mutates data."""
        logger.info("Starting consistency check")
        checks: list[tuple[str, Callable[[], list[ConsistencyIssue]]]] = [
            ("Bill Detail Consistency", self.check_bill_details),
            ("Reading Status Consistency", self.check_reading_status),
            ("Bill Balance Consistency", self.check_bill_balances),
            ("Detail Amount Calculation", self.check_detail_amounts),
            ("Bill Metadata Consistency", self.check_metadata),
        ]
        report = ConsistencyReport(
            timestamp=datetime.now(UTC),
            checks=[self._run_check(name, check) for name, check in checks],
        )
        report.summary = self._summarize(report)
        logger.info("Consistency check finished: %s", report.summary.message)
        return report

    def _run_check(
        self,
        name: str,
        check: Callable[[], list[ConsistencyIssue]],
    ) -> ConsistencyCheck:
        try:
            issues = check()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Consistency check '%s' failed", name)
            self.db.rollback()
            issues = [
                ConsistencyIssue(
                    id=issue_id(IssueType.CHECK_ERROR, "SYSTEM", name.lower().replace(" ", "_")),
                    type=IssueType.CHECK_ERROR,
                    severity=Severity.CRITICAL,
                    entity_type="SYSTEM",
                    entity_id=name,
                    description=f"Check '{name}' could not run: {exc}",
                    suggested_fix="manual_investigation",
                )
            ]
        return ConsistencyCheck(
            name=name,
            passed=not issues,
            issues=issues,
            executed_at=datetime.now(UTC),
        )

    @staticmethod
    def _summarize(report: ConsistencyReport) -> ReportSummary:
        summary = ReportSummary(total_checks=len(report.checks))
        summary.passed_checks = sum(1 for c in report.checks if c.passed)
        summary.failed_checks = summary.total_checks - summary.passed_checks
        for issue in report.issues:
            counter = SEVERITY_COUNTERS[issue.severity]
            setattr(summary, counter, getattr(summary, counter) + 1)
            summary.total_issues += 1
        summary.message = (
            f"{summary.passed_checks}/{summary.total_checks} checks passed, "
            f"{summary.total_issues} issue(s) found"
        )
        return summary


    def _evaluate_each(
        self,
        check: str,
        entity_type: str,
        records: Iterable[R],
        evaluate: Callable[[R], list[ConsistencyIssue]],
    ) -> list[ConsistencyIssue]:
        """Evaluate records one by one; a record that raises becomes its own issue."""
        issues: list[ConsistencyIssue] = []
        for record in records:
            try:
                issues.extend(evaluate(record))
            except RECORD_ERRORS as exc:
                logger.warning(
                    "%s %s could not be evaluated by %s: %s", entity_type, record.id, check, exc
                )
                issues.append(
                    ConsistencyIssue(
                        id=issue_id(IssueType.UNEVALUABLE_RECORD, entity_type, record.id, check),
                        type=IssueType.UNEVALUABLE_RECORD,
                        severity=Severity.MEDIUM,
                        entity_type=entity_type,
                        entity_id=str(record.id),
                        description=f"{entity_type} {record.id} could not be evaluated: {exc}",
                        suggested_fix="manual_review",
                        metadata={"check": check, "error": str(exc)},
                    )
                )
        return issues

    # -- Checks ---------------------------------------------------------------

    def check_bill_details(self) -> list[ConsistencyIssue]:
        """Missing details, duplicate details and bill totals that drift from details."""
        utility_bills = (
            self.db.query(Bill).filter(Bill.type == BillType.UTILITIES).order_by(Bill.id).all()
        )
        issues = self._evaluate_each("details", "BILL", utility_bills, self._bill_detail_issues)

        duplicates = (
            self.db.query(
                BillDetail.bill_id, BillDetail.meter_reading_id, func.count(BillDetail.id)
            )
            .filter(BillDetail.meter_reading_id.is_not(None))
            .group_by(BillDetail.bill_id, BillDetail.meter_reading_id)
            .having(func.count(BillDetail.id) > 1)
            .order_by(BillDetail.bill_id, BillDetail.meter_reading_id)
            .all()
        )
        for bill_id, reading_id, count in duplicates:
            issues.append(
                ConsistencyIssue(
                    id=issue_id(IssueType.DUPLICATE_BILL_DETAILS, "BILL", bill_id, reading_id),
                    type=IssueType.DUPLICATE_BILL_DETAILS,
                    severity=Severity.MEDIUM,
                    entity_type="BILL",
                    entity_id=str(bill_id),
                    description=(
                        f"Bill {bill_id} has {count} details for meter reading {reading_id}"
                    ),
                    suggested_fix="remove_duplicate_details",
                    metadata={"bill_id": bill_id, "meter_reading_id": reading_id, "count": count},
                )
            )
        return issues

    def _bill_detail_issues(self, bill: Bill) -> list[ConsistencyIssue]:
        details = list(bill.details)
        if not details:
            if is_legacy_bill(self.db, bill):
                return []
            return [self._missing_details_issue(bill)]

        details_total = round_money(sum((Decimal(d.amount) for d in details), Decimal("0")))
        if abs(details_total - Decimal(bill.amount)) <= self.config.amount_epsilon:
            return []
        return [
            ConsistencyIssue(
                id=issue_id(IssueType.AMOUNT_INCONSISTENCY, "BILL", bill.id),
                type=IssueType.AMOUNT_INCONSISTENCY,
                severity=Severity.HIGH,
                entity_type="BILL",
                entity_id=str(bill.id),
                description=(
                    f"Bill {bill.bill_number} amount {bill.amount} does not match "
                    f"its details total {details_total}"
                ),
                suggested_fix="recalculate_bill_amount",
                metadata={
                    "bill_amount": str(bill.amount),
                    "details_total": str(details_total),
                },
            )
        ]

    def _missing_details_issue(self, bill: Bill) -> ConsistencyIssue:
        try:
            metadata = bill.get_metadata()
        except MetadataParseError:
            metadata = None

        recoverable = False
        if metadata is not None and metadata.utility_details is not None:
            recoverable = bool(
                metadata.utility_details.meter_reading_ids
                or not metadata.utility_details.breakdown.is_empty()
            )
        return ConsistencyIssue(
            id=issue_id(IssueType.MISSING_BILL_DETAILS, "BILL", bill.id),
            type=IssueType.MISSING_BILL_DETAILS,
            severity=Severity.HIGH,
            entity_type="BILL",
            entity_id=str(bill.id),
            description=f"Utility bill {bill.bill_number} has no bill details",
            suggested_fix="rebuild_bill_details",
            metadata={
                "recoverable": recoverable,
                "meter_reading_ids": metadata.reading_ids if metadata else [],
            },
        )

    def check_reading_status(self) -> list[ConsistencyIssue]:
        """Billed flags that disagree with the bill details referencing the reading."""
        has_details = MeterReading.bill_details.any()

        orphaned = (
            self.db.query(MeterReading)
            .filter(MeterReading.is_billed.is_(True), ~has_details)
            .order_by(MeterReading.id)
            .all()
        )
        referenced = self._bill_referenced_reading_ids() if orphaned else set()
        issues = self._evaluate_each(
            "orphaned",
            "METER_READING",
            [r for r in orphaned if r.id not in referenced],
            self._orphaned_issues,
        )

        unflagged = (
            self.db.query(MeterReading)
            .filter(MeterReading.is_billed.is_(False), has_details)
            .order_by(MeterReading.id)
            .all()
        )
        issues.extend(
            self._evaluate_each("unflagged", "METER_READING", unflagged, self._unflagged_issues)
        )
        return issues

    @staticmethod
    def _orphaned_issues(reading: MeterReading) -> list[ConsistencyIssue]:
        return [
            ConsistencyIssue(
                id=issue_id(IssueType.ORPHANED_BILLED_STATUS, "METER_READING", reading.id),
                type=IssueType.ORPHANED_BILLED_STATUS,
                severity=Severity.MEDIUM,
                entity_type="METER_READING",
                entity_id=str(reading.id),
                description=(
                    f"Reading {reading.id} of {reading.meter.display_name} is marked "
                    "billed but no bill references it"
                ),
                suggested_fix="reset_billed_flag",
                metadata={"meter_id": reading.meter_id, "period": reading.period},
            )
        ]

    @staticmethod
    def _unflagged_issues(reading: MeterReading) -> list[ConsistencyIssue]:
        return [
            ConsistencyIssue(
                id=issue_id(IssueType.INCONSISTENT_READING_STATUS, "METER_READING", reading.id),
                type=IssueType.INCONSISTENT_READING_STATUS,
                severity=Severity.HIGH,
                entity_type="METER_READING",
                entity_id=str(reading.id),
                description=(
                    f"Reading {reading.id} has {len(reading.bill_details)} bill detail(s) "
                    "but is not marked billed"
                ),
                suggested_fix="set_billed_flag",
                metadata={"bill_detail_count": len(reading.bill_details)},
            )
        ]

    def _bill_referenced_reading_ids(self) -> set[int]:
        """Reading ids referenced by legacy links or bill metadata."""
        referenced = {
            rid
            for (rid,) in self.db.query(Bill.meter_reading_id)
            .filter(Bill.meter_reading_id.is_not(None))
            .all()
        }
        for bill in self.db.query(Bill).filter(Bill.metadata_json.is_not(None)).all():
            try:
                metadata = bill.get_metadata()
            except MetadataParseError:
                continue
            if metadata is not None:
                referenced.update(metadata.reading_ids)
        return referenced

    def check_bill_balances(self) -> list[ConsistencyIssue]:
        """Money invariant, status/money agreement and overpayment."""
        bills = self.db.query(Bill).order_by(Bill.id).all()
        return self._evaluate_each("balance", "BILL", bills, self._balance_issues)

    def _balance_issues(self, bill: Bill) -> list[ConsistencyIssue]:
        epsilon = self.config.amount_epsilon
        amount = Decimal(bill.amount)
        received = Decimal(bill.received_amount)
        pending = Decimal(bill.pending_amount)
        status = BillStatus(bill.status)

        if (
            abs(pending - (amount - received)) > epsilon
            or received < 0
            or pending < 0
            or received > amount + epsilon
        ):
            # Status is judged against a correct balance, after repair
            return [
                ConsistencyIssue(
                    id=issue_id(IssueType.BALANCE_INCONSISTENCY, "BILL", bill.id),
                    type=IssueType.BALANCE_INCONSISTENCY,
                    severity=Severity.HIGH,
                    entity_type="BILL",
                    entity_id=str(bill.id),
                    description=(
                        f"Bill {bill.bill_number}: amount {amount} != "
                        f"received {received} + pending {pending}"
                    ),
                    suggested_fix="rebalance_bill",
                    metadata={
                        "amount": str(amount),
                        "received_amount": str(received),
                        "pending_amount": str(pending),
                        "expected_pending_amount": str(amount - received),
                    },
                )
            ]

        issues: list[ConsistencyIssue] = []
        status_mismatch = (
            (status == BillStatus.COMPLETED and pending > epsilon)
            or (status == BillStatus.PAID and received <= 0)
            or (status in (BillStatus.PENDING, BillStatus.OVERDUE) and received > 0)
        )
        if status_mismatch:
            expected = expected_status(bill, self.config)
            issues.append(
                ConsistencyIssue(
                    id=issue_id(IssueType.STATUS_INCONSISTENCY, "BILL", bill.id),
                    type=IssueType.STATUS_INCONSISTENCY,
                    severity=Severity.MEDIUM,
                    entity_type="BILL",
                    entity_id=str(bill.id),
                    description=(
                        f"Bill {bill.bill_number} is {status.value} but its balance "
                        f"implies {expected.value}"
                    ),
                    suggested_fix="update_bill_status",
                    metadata={
                        "current_status": status.value,
                        "expected_status": expected.value,
                        "pending_amount": str(pending),
                    },
                )
            )

        if Decimal(bill.overpaid_amount or 0) > 0:
            issues.append(overpayment_issue(bill))
        return issues

    def check_detail_amounts(self) -> list[ConsistencyIssue]:
        """Detail amounts that are not usage times unit price."""
        details = self.db.query(BillDetail).order_by(BillDetail.id).all()
        return self._evaluate_each("detail_amount", "BILL_DETAIL", details, self._detail_issues)

    def _detail_issues(self, detail: BillDetail) -> list[ConsistencyIssue]:
        expected = round_money(Decimal(detail.usage) * Decimal(detail.unit_price))
        if abs(expected - Decimal(detail.amount)) <= self.config.amount_epsilon:
            return []
        return [
            ConsistencyIssue(
                id=issue_id(IssueType.INCORRECT_DETAIL_AMOUNT, "BILL_DETAIL", detail.id),
                type=IssueType.INCORRECT_DETAIL_AMOUNT,
                severity=Severity.HIGH,
                entity_type="BILL_DETAIL",
                entity_id=str(detail.id),
                description=(
                    f"Detail {detail.meter_name} on bill {detail.bill_id}: "
                    f"{detail.usage} x {detail.unit_price} != {detail.amount}"
                ),
                suggested_fix="recalculate_detail_amount",
                metadata={
                    "bill_id": detail.bill_id,
                    "current_amount": str(detail.amount),
                    "expected_amount": str(expected),
                },
            )
        ]

    def check_metadata(self) -> list[ConsistencyIssue]:
        """Bills whose metadata blob cannot be parsed."""
        issues: list[ConsistencyIssue] = []
        bills = (
            self.db.query(Bill).filter(Bill.metadata_json.is_not(None)).order_by(Bill.id).all()
        )
        for bill in bills:
            try:
                bill.get_metadata()
            except MetadataParseError as exc:
                issues.append(
                    ConsistencyIssue(
                        id=issue_id(IssueType.UNPARSEABLE_METADATA, "BILL", bill.id),
                        type=IssueType.UNPARSEABLE_METADATA,
                        severity=Severity.MEDIUM,
                        entity_type="BILL",
                        entity_id=str(bill.id),
                        description=exc.message,
                        suggested_fix="manual_review",
                    )
                )
        return issues


def run_consistency_check(db: Session, config: BillingConfig) -> ConsistencyReport:
    """Run a full consistency scan."""
    return ConsistencyChecker(db, config).run()
