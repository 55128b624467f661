"""Usage calculator: turns a pair of readings and a unit price into money."""

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

from app.core.errors import InvalidReadingError
from app.models.enums import PriceSource
from app.models.meter import Meter
from app.models.meter_reading import MeterReading
from app.services.billing_config import BillingConfig

CENT = Decimal("0.01")


class UsageResult(NamedTuple):
    """Usage keeps full precision; amount is rounded to cents."""

    usage: Decimal
    amount: Decimal


def round_money(value: Decimal | int | str) -> Decimal:
    """Round a currency amount to 2 decimal places, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_usage(
    previous: Decimal,
    current: Decimal,
    unit_price: Decimal,
) -> UsageResult:
    """Compute usage and amount for a reading pair.

    Meter rollover is not supported, so a decreasing reading is always
    treated as an operator error.
    """
    previous = Decimal(previous)
    current = Decimal(current)
    unit_price = Decimal(unit_price)

    if previous < 0 or current < 0:
        raise InvalidReadingError(
            f"Readings must not be negative (previous={previous}, current={current})"
        )
    if current < previous:
        raise InvalidReadingError(
            f"Current reading {current} is lower than previous reading {previous}"
        )
    if unit_price <= 0:
        raise InvalidReadingError(f"Unit price must be positive, got {unit_price}")

    usage = current - previous
    return UsageResult(usage=usage, amount=round_money(usage * unit_price))


def resolve_unit_price(
    meter: Meter,
    config: BillingConfig,
    reading: MeterReading | None = None,
    override: Decimal | None = None,
) -> tuple[Decimal, PriceSource]:
    """Pick the unit price for a reading.

    Order: explicit override, price stored on the reading, meter price,
    configured default for the meter type.
    """
    if override is not None:
        return Decimal(override), PriceSource.MANUAL_OVERRIDE
    if reading is not None and reading.unit_price is not None:
        return Decimal(reading.unit_price), PriceSource.METER_CONFIG
    if meter.unit_price is not None:
        return Decimal(meter.unit_price), PriceSource.METER_CONFIG

    default = config.default_price(meter.meter_type)
    if default is None:
        raise InvalidReadingError(f"No unit price configured for {meter.meter_type}")
    return default, PriceSource.METER_CONFIG
