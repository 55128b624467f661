"""Meter service for business logic.

Meters with readings are never hard-deleted: removal flips ``is_active`` so
historical readings, bill details and statistics stay reachable.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.core.errors import MeterNotFoundError, RoomNotFoundError
from app.models.bill import Bill
from app.models.bill_detail import BillDetail
from app.models.enums import MeterType, RemovalOutcome
from app.models.meter import Meter
from app.models.meter_reading import MeterReading
from app.models.room import Room
from app.schemas.meter import (
    MeterCreate,
    MeterHistoryStats,
    MeterIntegrityReport,
    MeterRemovalResult,
    MeterTypeSummary,
    RoomInfo,
)

logger = logging.getLogger(__name__)

DEFAULT_UNITS = {
    MeterType.ELECTRICITY: "kWh",
    MeterType.COLD_WATER: "m³",
    MeterType.HOT_WATER: "m³",
    MeterType.GAS: "m³",
}


def create_meter(db: Session, meter_data: MeterCreate) -> Meter:
    """Install a meter in a room."""
    room = db.query(Room).filter(Room.id == meter_data.room_id).first()
    if not room:
        raise RoomNotFoundError(meter_data.room_id)

    db_meter = Meter(
        room_id=room.id,
        meter_number=meter_data.meter_number,
        display_name=meter_data.display_name,
        meter_type=meter_data.meter_type,
        unit=meter_data.unit or DEFAULT_UNITS[meter_data.meter_type],
        unit_price=meter_data.unit_price,
    )
    db.add(db_meter)
    db.commit()
    db.refresh(db_meter)
    logger.info("Created %s meter %s in room %s", db_meter.meter_type, db_meter.id, room.id)
    return db_meter


def get_meter(db: Session, meter_id: int) -> Meter:
    """Get a meter by ID, including removed ones."""
    meter = db.query(Meter).filter(Meter.id == meter_id).first()
    if not meter:
        raise MeterNotFoundError(meter_id)
    return meter


def remove_meter(db: Session, meter_id: int) -> MeterRemovalResult:
    """Remove a meter: soft-delete when it has readings, hard-delete otherwise.

    The reading count is taken with the meter row locked so a concurrent
    reading insert cannot slip in between the count and the delete.
    """
    meter = db.query(Meter).filter(Meter.id == meter_id).with_for_update().first()
    if not meter:
        raise MeterNotFoundError(meter_id)

    reading_count = (
        db.query(func.count(MeterReading.id)).filter(MeterReading.meter_id == meter_id).scalar()
    )

    if reading_count:
        meter.is_active = False
        outcome = RemovalOutcome.SOFT_DELETED
        message = f"Meter deactivated; {reading_count} historical reading(s) preserved"
    else:
        db.delete(meter)
        outcome = RemovalOutcome.HARD_DELETED
        message = "Meter had no readings and was deleted"

    db.commit()
    logger.info("Removed meter %s: %s", meter_id, outcome.value)
    return MeterRemovalResult(
        meter_id=meter_id,
        outcome=outcome,
        reading_count=reading_count,
        message=message,
    )


def _average_monthly_usage(total_usage: Decimal, first: date | None, last: date | None) -> Decimal:
    if first is None or last is None or total_usage <= 0:
        return Decimal("0")
    months = max(Decimal((last - first).days) / Decimal(30), Decimal(1))
    return (total_usage / months).quantize(Decimal("0.01"))


def get_meter_history_stats(
    db: Session,
    include_inactive: bool = True,
    meter_type: MeterType | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[MeterHistoryStats]:
    """Per-meter reading totals, removed meters included by default."""
    reading_filters = [MeterReading.meter_id == Meter.id]
    if start_date:
        reading_filters.append(MeterReading.reading_date >= start_date)
    if end_date:
        reading_filters.append(MeterReading.reading_date <= end_date)

    query = (
        db.query(
            Meter,
            func.count(MeterReading.id),
            func.coalesce(func.sum(MeterReading.usage), 0),
            func.coalesce(func.sum(MeterReading.amount), 0),
            func.min(MeterReading.reading_date),
            func.max(MeterReading.reading_date),
        )
        .outerjoin(MeterReading, and_(*reading_filters))
        .group_by(Meter.id)
        .order_by(Meter.is_active.desc(), Meter.id)
    )
    if not include_inactive:
        query = query.filter(Meter.is_active.is_(True))
    if meter_type:
        query = query.filter(Meter.meter_type == meter_type)

    stats = []
    for meter, count, usage, amount, first, last in query.all():
        total_usage = Decimal(str(usage))
        stats.append(
            MeterHistoryStats(
                meter_id=meter.id,
                meter_number=meter.meter_number,
                display_name=meter.display_name,
                meter_type=meter.meter_type,
                is_active=meter.is_active,
                total_readings=count,
                total_usage=total_usage,
                total_amount=Decimal(str(amount)).quantize(Decimal("0.01")),
                first_reading_date=first,
                last_reading_date=last,
                average_monthly_usage=_average_monthly_usage(total_usage, first, last),
                room_info=RoomInfo(
                    room_number=meter.room.room_number,
                    building_name=meter.room.building_name,
                ),
            )
        )
    return stats


def get_meter_type_summary(
    db: Session,
    include_inactive: bool = True,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[MeterType, MeterTypeSummary]:
    """Reading totals per meter type."""
    summary = {meter_type: MeterTypeSummary() for meter_type in MeterType}
    stats = get_meter_history_stats(
        db,
        include_inactive=include_inactive,
        start_date=start_date,
        end_date=end_date,
    )

    for stat in stats:
        entry = summary[MeterType(stat.meter_type)]
        entry.total_meters += 1
        if stat.is_active:
            entry.active_meters += 1
        else:
            entry.removed_meters += 1
        entry.total_usage += stat.total_usage
        entry.total_amount += stat.total_amount

    for entry in summary.values():
        if entry.total_meters:
            entry.average_usage_per_meter = (entry.total_usage / entry.total_meters).quantize(
                Decimal("0.01")
            )
    return summary


def validate_meter_data_integrity(db: Session, meter_id: int) -> MeterIntegrityReport:
    """Check that a meter's readings and billed history are still reachable."""
    report = MeterIntegrityReport(meter_id=meter_id, is_valid=True)
    meter = db.query(Meter).filter(Meter.id == meter_id).first()
    if not meter:
        report.is_valid = False
        report.issues.append("Meter does not exist or was hard-deleted")
        report.recommendations.append("Deactivate meters with history instead of deleting them")
        return report

    reading_count = len(meter.readings)
    if reading_count == 0:
        report.recommendations.append("Meter has no history and can be removed safely")
    elif meter.is_active:
        report.recommendations.append(
            f"Meter has {reading_count} reading(s); removal will deactivate it"
        )
    else:
        report.recommendations.append(
            f"Meter is deactivated; {reading_count} historical reading(s) preserved"
        )

    reading_ids = [r.id for r in meter.readings]
    if reading_ids:
        detail_bills = (
            db.query(func.count(func.distinct(BillDetail.bill_id)))
            .filter(BillDetail.meter_reading_id.in_(reading_ids))
            .scalar()
        )
        legacy_bills = (
            db.query(func.count(Bill.id)).filter(Bill.meter_reading_id.in_(reading_ids)).scalar()
        )
        if detail_bills or legacy_bills:
            report.recommendations.append(
                f"Meter readings appear on {detail_bills + legacy_bills} bill(s)"
            )

        billed_without_detail = [
            r.id for r in meter.readings if r.is_billed and not r.bill_details
        ]
        if billed_without_detail and not legacy_bills:
            report.issues.append(
                f"{len(billed_without_detail)} billed reading(s) have no bill detail"
            )

    report.is_valid = not report.issues
    return report
