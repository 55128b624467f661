"""Bill aggregator: composes bill details into utility bills and persists them.

Two composition strategies share one contract:

- AGGREGATED: one bill per contract per period, details from every meter.
- ITEMIZED: one bill per meter reading.

Readings are grouped by their own period label. When a bill already exists
for the same contract, period and aggregation key, new details are appended
to it instead of creating a second bill.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    AppError,
    BusinessRuleViolation,
    ContractNotFoundError,
    EmptyReadingSetError,
    MetadataParseError,
)
from app.models.bill import AGGREGATED_KEY, Bill, itemized_key
from app.models.bill_detail import BillDetail
from app.models.contract import Contract
from app.models.enums import AggregationMode, BillStatus, BillType, MeterType
from app.models.meter_reading import MeterReading
from app.schemas.bill import (
    BillGenerationRequest,
    BillGenerationResult,
    BillResponse,
    GenerationMessage,
)
from app.schemas.billing import BillMetadata, UtilityDetails
from app.services.bill_details import DetailDraft, build_details, summarize_breakdown, total_amount
from app.services.bill_lifecycle import apply_amount
from app.services.billing_config import BillingConfig

logger = logging.getLogger(__name__)

BILL_TYPE_PREFIX = {
    BillType.RENT: "R",
    BillType.DEPOSIT: "D",
    BillType.UTILITIES: "U",
    BillType.OTHER: "O",
}

METER_TYPE_LABEL = {
    MeterType.ELECTRICITY: "Electricity",
    MeterType.COLD_WATER: "Cold water",
    MeterType.HOT_WATER: "Hot water",
    MeterType.GAS: "Gas",
}


@dataclass
class BillDraft:
    """A bill to be created or appended to."""

    period: str
    aggregation_key: str
    mode: AggregationMode
    details: list[DetailDraft] = field(default_factory=list)

    @property
    def amount(self) -> Decimal:
        return total_amount(self.details)

    @property
    def reading_ids(self) -> list[int]:
        return [d.meter_reading_id for d in self.details if d.meter_reading_id is not None]


class BillCompositionStrategy(ABC):
    """Turns bill details into bill drafts."""

    mode: AggregationMode

    @abstractmethod
    def compose(self, drafts: Sequence[DetailDraft]) -> list[BillDraft]:
        """Group details into bills."""


class AggregatedStrategy(BillCompositionStrategy):
    """One bill per period holding every meter's details."""

    mode = AggregationMode.AGGREGATED

    def compose(self, drafts: Sequence[DetailDraft]) -> list[BillDraft]:
        if not drafts:
            raise EmptyReadingSetError("An aggregated bill needs at least one meter reading")

        bills: dict[str, BillDraft] = {}
        for draft in drafts:
            bill = bills.setdefault(
                draft.period,
                BillDraft(period=draft.period, aggregation_key=AGGREGATED_KEY, mode=self.mode),
            )
            bill.details.append(draft)
        return list(bills.values())


class ItemizedStrategy(BillCompositionStrategy):
    """One bill per meter reading."""

    mode = AggregationMode.ITEMIZED

    def compose(self, drafts: Sequence[DetailDraft]) -> list[BillDraft]:
        return [
            BillDraft(
                period=draft.period,
                aggregation_key=itemized_key(draft.meter_reading_id),
                mode=self.mode,
                details=[draft],
            )
            for draft in drafts
            if draft.meter_reading_id is not None
        ]


STRATEGIES: dict[AggregationMode, BillCompositionStrategy] = {
    AggregationMode.AGGREGATED: AggregatedStrategy(),
    AggregationMode.ITEMIZED: ItemizedStrategy(),
}


def get_strategy(mode: AggregationMode | str) -> BillCompositionStrategy:
    """Get the composition strategy for a mode."""
    return STRATEGIES[AggregationMode(mode)]


def select_aggregation_mode(
    preference: AggregationMode | str | None,
    config: BillingConfig,
) -> AggregationMode:
    """Use the caller's preference, falling back to the configured default."""
    if preference:
        return AggregationMode(preference)
    return config.default_aggregation_mode


def generate_bill_number(bill_type: BillType | str) -> str:
    """Generate a unique bill number: BILL + type letter + 9 hex digits."""
    prefix = BILL_TYPE_PREFIX.get(BillType(bill_type), "B")
    return f"BILL{prefix}{uuid.uuid4().hex[:9].upper()}"


def calculate_due_date(reading_date: date, config: BillingConfig) -> date:
    """Utility bills fall due a fixed number of days after the reading."""
    return reading_date + timedelta(days=config.due_days)


def compose_remarks(details: Sequence[DetailDraft | BillDetail]) -> str:
    """Human-readable summary of a utility bill's line items."""
    parts = [
        f"{METER_TYPE_LABEL.get(MeterType(d.meter_type), d.meter_type)} "
        f"{Decimal(d.amount):.2f} ({Decimal(d.usage).normalize():f} {d.unit})"
        for d in details
    ]
    return "Utilities - " + ", ".join(parts)


def _load_metadata(bill: Bill, mode: AggregationMode) -> BillMetadata:
    try:
        metadata = bill.get_metadata()
    except MetadataParseError:
        logger.warning("Replacing unparseable metadata on bill %s", bill.bill_number)
        metadata = None
    if metadata is None:
        metadata = BillMetadata(generated_at=datetime.now(UTC), aggregation_mode=mode)
    return metadata


def refresh_bill_composition(bill: Bill, mode: AggregationMode | None = None) -> None:
    """Rewrite the metadata envelope and remarks from the bill's details."""
    details = list(bill.details)
    metadata = _load_metadata(bill, mode or AggregationMode.AGGREGATED)
    reading_ids = set(metadata.reading_ids)
    reading_ids.update(d.meter_reading_id for d in details if d.meter_reading_id is not None)
    metadata.utility_details = UtilityDetails(
        breakdown=summarize_breakdown(details),
        meter_reading_ids=sorted(reading_ids),
    )
    bill.set_metadata(metadata)
    if details:
        bill.remarks = compose_remarks(details)


def _append_or_create(
    db: Session,
    contract: Contract,
    draft: BillDraft,
    config: BillingConfig,
) -> tuple[Bill | None, bool, list[int]]:
    """Find the bill for the draft's key and add its details.

    Returns (bill, created, skipped_reading_ids). The bill is None when
    every reading was billed concurrently.
    """
    bill = (
        db.query(Bill)
        .filter(
            Bill.contract_id == contract.id,
            Bill.period == draft.period,
            Bill.type == BillType.UTILITIES,
            Bill.aggregation_key == draft.aggregation_key,
        )
        .with_for_update()
        .first()
    )
    if bill is not None and BillStatus(bill.status) == BillStatus.COMPLETED:
        raise BusinessRuleViolation(
            f"Bill {bill.bill_number} for period {draft.period} is already completed",
            "bill_completed",
            suggested_fix="Bill these readings in a new period",
        )

    readings = {
        r.id: r
        for r in db.query(MeterReading)
        .filter(MeterReading.id.in_(draft.reading_ids))
        .with_for_update()
        .all()
    }
    already_linked = {d.meter_reading_id for d in bill.details} if bill is not None else set()
    new_details = [
        d
        for d in draft.details
        if d.meter_reading_id in readings
        and not readings[d.meter_reading_id].is_billed
        and d.meter_reading_id not in already_linked
    ]
    added = {d.meter_reading_id for d in new_details}
    skipped = [rid for rid in draft.reading_ids if rid not in added]
    if not new_details:
        return bill, False, skipped

    created = bill is None
    if created:
        first = new_details[0]
        due_from = max(
            (d.reading_date for d in new_details if d.reading_date), default=date.today()
        )
        bill = Bill(
            bill_number=generate_bill_number(BillType.UTILITIES),
            contract_id=contract.id,
            type=BillType.UTILITIES,
            status=BillStatus.PENDING,
            period=draft.period,
            aggregation_key=draft.aggregation_key,
            amount=Decimal("0"),
            received_amount=Decimal("0"),
            pending_amount=Decimal("0"),
            overpaid_amount=Decimal("0"),
            due_date=calculate_due_date(due_from, config),
            meter_reading_id=(
                first.meter_reading_id if draft.mode == AggregationMode.ITEMIZED else None
            ),
        )
        db.add(bill)

    for detail in new_details:
        bill.details.append(detail.to_model())
        reading = readings[detail.meter_reading_id]
        reading.is_billed = True
        if reading.contract_id is None:
            reading.contract_id = contract.id

    apply_amount(bill, sum((Decimal(d.amount) for d in bill.details), Decimal("0")))
    refresh_bill_composition(bill, draft.mode)
    db.flush()
    return bill, created, skipped


def _commit_draft(
    db: Session,
    contract: Contract,
    draft: BillDraft,
    config: BillingConfig,
) -> tuple[Bill | None, bool, list[int]]:
    bill, created, skipped = _append_or_create(db, contract, draft, config)
    db.commit()
    if bill is not None:
        db.refresh(bill)
    return bill, created, skipped


def _persist_draft(
    db: Session,
    contract: Contract,
    draft: BillDraft,
    config: BillingConfig,
) -> tuple[Bill | None, bool, list[int]]:
    """Persist one bill draft in its own transaction.

    A unique-key collision means a concurrent request created the bill
    first; roll back and retry once so the details are appended to it.
    A second collision propagates to the caller.
    """
    try:
        return _commit_draft(db, contract, draft, config)
    except IntegrityError:
        db.rollback()
        logger.warning(
            "Bill for contract %s period %s created concurrently; appending instead",
            contract.contract_number,
            draft.period,
        )
    return _commit_draft(db, contract, draft, config)


def generate_utility_bills(
    db: Session,
    request: BillGenerationRequest,
    config: BillingConfig,
) -> BillGenerationResult:
    """Generate utility bills for a contract from meter readings.

    Already-billed readings are skipped with a warning. A failure for one
    reading or period is reported in ``errors`` without failing the batch.
    """
    contract = db.query(Contract).filter(Contract.id == request.contract_id).first()
    if not contract:
        raise ContractNotFoundError(request.contract_id)

    mode = select_aggregation_mode(request.aggregation_mode, config)
    if not request.reading_ids and mode == AggregationMode.AGGREGATED:
        raise EmptyReadingSetError("An aggregated bill needs at least one meter reading")

    result = BillGenerationResult()
    reading_ids = list(dict.fromkeys(request.reading_ids))
    readings = {
        r.id: r for r in db.query(MeterReading).filter(MeterReading.id.in_(reading_ids)).all()
    }

    drafts: list[DetailDraft] = []
    for reading_id in reading_ids:
        reading = readings.get(reading_id)
        if reading is None:
            result.errors.append(
                GenerationMessage(reading_id=reading_id, message="Meter reading not found")
            )
            continue
        if reading.contract_id is not None and reading.contract_id != contract.id:
            result.errors.append(
                GenerationMessage(
                    reading_id=reading_id,
                    period=reading.period,
                    message=f"Reading belongs to contract {reading.contract_id}",
                )
            )
            continue
        if reading.is_billed:
            result.warnings.append(
                GenerationMessage(
                    reading_id=reading_id,
                    period=reading.period,
                    message="Reading already billed; skipped",
                )
            )
            continue
        try:
            built = build_details(
                [reading],
                config,
                price_overrides=request.price_overrides,
                include_zero_usage=request.include_zero_usage,
            )
        except AppError as exc:
            result.errors.append(
                GenerationMessage(reading_id=reading_id, period=reading.period, message=exc.message)
            )
            continue
        if not built:
            result.warnings.append(
                GenerationMessage(
                    reading_id=reading_id,
                    period=reading.period,
                    message="Zero-usage reading excluded",
                )
            )
            continue
        drafts.extend(built)

    bill_drafts = get_strategy(mode).compose(drafts) if drafts else []
    billed = 0

    for draft in bill_drafts:
        try:
            bill, created, skipped = _persist_draft(db, contract, draft, config)
        except (AppError, SQLAlchemyError) as exc:
            db.rollback()
            message = exc.message if isinstance(exc, AppError) else str(exc)
            logger.exception("Failed to bill period %s for contract %s", draft.period, contract.id)
            for reading_id in draft.reading_ids:
                result.errors.append(
                    GenerationMessage(reading_id=reading_id, period=draft.period, message=message)
                )
            continue

        for reading_id in skipped:
            result.warnings.append(
                GenerationMessage(
                    reading_id=reading_id,
                    period=draft.period,
                    message="Reading billed concurrently or already on the bill; skipped",
                )
            )
        if bill is None or len(skipped) == len(draft.reading_ids):
            continue

        billed += len(draft.reading_ids) - len(skipped)
        response = BillResponse.model_validate(bill)
        if created:
            result.created_bills.append(response)
            logger.info(
                "Created %s bill %s for contract %s period %s: %s",
                mode.value,
                bill.bill_number,
                contract.contract_number,
                draft.period,
                bill.amount,
            )
        else:
            result.updated_bills.append(response)
            logger.info(
                "Appended %d detail(s) to bill %s, new amount %s",
                len(draft.reading_ids) - len(skipped),
                bill.bill_number,
                bill.amount,
            )

    result.summary.success = billed
    result.summary.warnings = len(result.warnings)
    result.summary.errors = len(result.errors)
    result.message = (
        f"{billed} reading(s) billed into {len(result.created_bills)} new and "
        f"{len(result.updated_bills)} updated bill(s); "
        f"{len(result.warnings)} warning(s), {len(result.errors)} error(s)"
    )
    return result
