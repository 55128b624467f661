"""Bill detail builder: normalizes meter readings into bill line items."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from app.core.errors import EmptyReadingSetError
from app.models.bill_detail import BillDetail
from app.models.enums import METER_CATEGORY, MeterType, PriceSource, UtilityCategory
from app.models.meter_reading import MeterReading
from app.schemas.billing import UtilityBreakdown, UtilityCharge
from app.services.billing_config import BillingConfig
from app.services.usage import compute_usage, resolve_unit_price, round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetailDraft:
    """A bill line item that has not been persisted yet."""

    meter_reading_id: int | None
    meter_id: int | None
    meter_type: MeterType
    meter_name: str
    unit: str
    usage: Decimal
    unit_price: Decimal
    amount: Decimal
    previous_reading: Decimal | None
    current_reading: Decimal | None
    reading_date: date | None
    period: str
    price_source: PriceSource = PriceSource.METER_CONFIG

    def to_model(self, bill_id: int | None = None) -> BillDetail:
        """Create the ORM row for this draft."""
        return BillDetail(
            bill_id=bill_id,
            meter_reading_id=self.meter_reading_id,
            meter_id=self.meter_id,
            meter_type=self.meter_type,
            meter_name=self.meter_name,
            unit=self.unit,
            usage=self.usage,
            unit_price=self.unit_price,
            amount=self.amount,
            previous_reading=self.previous_reading,
            current_reading=self.current_reading,
            reading_date=self.reading_date,
            price_source=self.price_source,
        )


def detail_from_reading(
    reading: MeterReading,
    config: BillingConfig,
    override: Decimal | None = None,
) -> DetailDraft:
    """Build one line item from a reading, recomputing usage and amount."""
    meter = reading.meter
    unit_price, source = resolve_unit_price(meter, config, reading=reading, override=override)
    result = compute_usage(reading.previous_reading, reading.current_reading, unit_price)
    return DetailDraft(
        meter_reading_id=reading.id,
        meter_id=meter.id,
        meter_type=MeterType(meter.meter_type),
        meter_name=meter.display_name,
        unit=meter.unit,
        usage=result.usage,
        unit_price=unit_price,
        amount=result.amount,
        previous_reading=Decimal(reading.previous_reading),
        current_reading=Decimal(reading.current_reading),
        reading_date=reading.reading_date,
        period=reading.period,
        price_source=source,
    )


def build_details(
    readings: Iterable[MeterReading],
    config: BillingConfig,
    price_overrides: Mapping[int, Decimal] | None = None,
    require_readings: bool = False,
    include_zero_usage: bool = True,
) -> list[DetailDraft]:
    """Build one line item per unbilled reading.

    Already-billed readings are skipped. Zero-usage readings are kept unless
    ``include_zero_usage`` is False. With ``require_readings`` an empty
    result raises EmptyReadingSetError.
    """
    overrides = price_overrides or {}
    drafts: list[DetailDraft] = []

    for reading in readings:
        if reading.is_billed:
            logger.debug("Skipping billed reading %s", reading.id)
            continue
        draft = detail_from_reading(reading, config, overrides.get(reading.id))
        if draft.usage == 0 and not include_zero_usage:
            continue
        drafts.append(draft)

    if require_readings and not drafts:
        raise EmptyReadingSetError("No unbilled meter readings to build bill details from")
    return drafts


def total_amount(drafts: Iterable[DetailDraft]) -> Decimal:
    """Sum line item amounts."""
    return round_money(sum((d.amount for d in drafts), Decimal("0")))


def summarize_breakdown(drafts: Iterable[DetailDraft | BillDetail]) -> UtilityBreakdown:
    """Roll line items up into per-category subtotals.

    The subtotal's unit price is the shared price when every item in the
    category uses the same one, otherwise the effective average price.
    """
    buckets: dict[UtilityCategory, list[DetailDraft | BillDetail]] = {}
    for item in drafts:
        category = METER_CATEGORY[MeterType(item.meter_type)]
        buckets.setdefault(category, []).append(item)

    charges: dict[str, UtilityCharge] = {}
    for category, items in buckets.items():
        usage = sum((Decimal(i.usage) for i in items), Decimal("0"))
        amount = round_money(sum((Decimal(i.amount) for i in items), Decimal("0")))
        prices = {Decimal(i.unit_price) for i in items}
        if len(prices) == 1:
            unit_price = prices.pop()
        elif usage > 0:
            unit_price = (amount / usage).quantize(Decimal("0.0001"))
        else:
            unit_price = max(prices)
        charges[category.value] = UtilityCharge(usage=usage, unit_price=unit_price, amount=amount)

    return UtilityBreakdown(**charges)
