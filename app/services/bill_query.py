"""Bill details read path with fallbacks for bills created before details existed.

Resolvers are tried in order and the first one that yields items wins:

1. ``bill_details`` - persisted BillDetail rows
2. ``meter_reading`` - the single reading of a legacy bill (see ``legacy_reading``)
3. ``related_readings`` - several reading ids recorded in the bill metadata
4. ``empty`` - nothing could be resolved

Legacy items are built for display only and are never persisted as
BillDetail rows.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.errors import MetadataParseError
from app.models.bill import Bill
from app.models.bill_detail import BillDetail
from app.models.enums import MeterType, PriceSource
from app.models.meter_reading import MeterReading
from app.schemas.bill import (
    BillDetailItem,
    BillDetailsMetadata,
    BillDetailsResponse,
    BillInfo,
    DetailSource,
)
from app.services.bill_lifecycle import get_bill

logger = logging.getLogger(__name__)


def _item_from_detail(detail: BillDetail) -> BillDetailItem:
    return BillDetailItem(
        id=str(detail.id),
        bill_id=detail.bill_id,
        meter_reading_id=detail.meter_reading_id,
        meter_type=MeterType(detail.meter_type),
        meter_name=detail.meter_name,
        unit=detail.unit,
        usage=detail.usage,
        unit_price=detail.unit_price,
        amount=detail.amount,
        previous_reading=detail.previous_reading,
        current_reading=detail.current_reading,
        reading_date=detail.reading_date,
        price_source=PriceSource(detail.price_source),
    )


def _item_from_reading(bill: Bill, reading: MeterReading, prefix: str) -> BillDetailItem:
    meter = reading.meter
    return BillDetailItem(
        id=f"{prefix}-{reading.id}",
        bill_id=bill.id,
        meter_reading_id=reading.id,
        meter_type=MeterType(meter.meter_type),
        meter_name=meter.display_name,
        unit=meter.unit,
        usage=reading.usage,
        unit_price=reading.unit_price,
        amount=reading.amount,
        previous_reading=reading.previous_reading,
        current_reading=reading.current_reading,
        reading_date=reading.reading_date,
        price_source=PriceSource.METER_CONFIG,
    )


class DetailResolver(ABC):
    """One strategy for producing a bill's line items."""

    source: DetailSource

    @abstractmethod
    def resolve(self, db: Session, bill: Bill) -> list[BillDetailItem]:
        """Return line items, or an empty list when this source has none."""


class BillDetailRowsResolver(DetailResolver):
    source: DetailSource = "bill_details"

    def resolve(self, db: Session, bill: Bill) -> list[BillDetailItem]:
        return [_item_from_detail(d) for d in bill.details]


class LegacyMeterReadingResolver(DetailResolver):
    source: DetailSource = "meter_reading"

    def resolve(self, db: Session, bill: Bill) -> list[BillDetailItem]:
        reading = legacy_reading(db, bill)
        if reading is None:
            return []
        return [_item_from_reading(bill, reading, "legacy")]


class RelatedReadingsResolver(DetailResolver):
    """Rebuild items from the reading ids listed in the bill metadata."""

    source: DetailSource = "related_readings"

    def resolve(self, db: Session, bill: Bill) -> list[BillDetailItem]:
        try:
            metadata = bill.get_metadata()
        except MetadataParseError as exc:
            logger.warning("%s", exc.message)
            return []
        if metadata is None or not metadata.reading_ids:
            return []

        readings = (
            db.query(MeterReading)
            .filter(MeterReading.id.in_(metadata.reading_ids))
            .order_by(MeterReading.id)
            .all()
        )
        return [_item_from_reading(bill, r, "related") for r in readings]


class EmptyResolver(DetailResolver):
    """Last in the chain; used when nothing else resolves."""

    source: DetailSource = "empty"

    def resolve(self, db: Session, bill: Bill) -> list[BillDetailItem]:
        return []


RESOLVERS: tuple[DetailResolver, ...] = (
    BillDetailRowsResolver(),
    LegacyMeterReadingResolver(),
    RelatedReadingsResolver(),
    EmptyResolver(),
)


def resolve_details(db: Session, bill: Bill) -> tuple[DetailSource, list[BillDetailItem]]:
    """Run the resolver chain for a bill."""
    for resolver in RESOLVERS[:-1]:
        items = resolver.resolve(db, bill)
        if items:
            return resolver.source, items
    fallback = RESOLVERS[-1]
    return fallback.source, fallback.resolve(db, bill)


def legacy_reading(db: Session, bill: Bill) -> MeterReading | None:
    """The single reading a legacy bill resolves to, if the bill is legacy.

    A legacy bill has no detail rows and either a direct reading link or
    exactly one reading id in its metadata, and that reading still exists.
    """
    if bill.details:
        return None

    reading_id = bill.meter_reading_id
    if reading_id is None:
        try:
            metadata = bill.get_metadata()
        except MetadataParseError:
            return None
        if metadata is None or len(metadata.reading_ids) != 1:
            return None
        reading_id = metadata.reading_ids[0]

    reading = db.query(MeterReading).filter(MeterReading.id == reading_id).first()
    if reading is None:
        logger.warning("Bill %s references missing reading %s", bill.bill_number, reading_id)
    return reading


def is_legacy_bill(db: Session, bill: Bill) -> bool:
    """Whether a bill's details are resolved from a single legacy reading."""
    return legacy_reading(db, bill) is not None


def get_bill_details(db: Session, bill_id: int) -> BillDetailsResponse:
    """Get a bill's line items in one shape regardless of how it was stored."""
    bill = get_bill(db, bill_id)
    source, items = resolve_details(db, bill)

    return BillDetailsResponse(
        data=items,
        metadata=BillDetailsMetadata(
            source=source,
            is_legacy=source not in ("bill_details", "empty"),
            total_amount=sum((i.amount for i in items), Decimal("0")),
            bill_info=BillInfo(
                id=bill.id,
                bill_number=bill.bill_number,
                type=bill.type,
                amount=bill.amount,
                status=bill.status,
            ),
        ),
    )


def find_bills_for_reading(db: Session, reading_id: int) -> list[Bill]:
    """Find every bill that references a reading.

    A bill references a reading through a detail row, its legacy direct
    link, or the reading ids recorded in its metadata.
    """
    detail_bill_ids = select(BillDetail.bill_id).where(BillDetail.meter_reading_id == reading_id)
    candidates = (
        db.query(Bill)
        .filter(
            or_(
                Bill.id.in_(detail_bill_ids),
                Bill.meter_reading_id == reading_id,
                Bill.metadata_json.contains(str(reading_id)),
            )
        )
        .order_by(Bill.id)
        .all()
    )

    bills = []
    for bill in candidates:
        if bill.meter_reading_id == reading_id or any(
            d.meter_reading_id == reading_id for d in bill.details
        ):
            bills.append(bill)
            continue
        try:
            metadata = bill.get_metadata()
        except MetadataParseError:
            continue
        if metadata is not None and reading_id in metadata.reading_ids:
            bills.append(bill)
    return bills
