"""Enum definitions for meters, bills and consistency findings."""

from enum import Enum


class MeterType(str, Enum):
    """Utility measured by a meter."""

    ELECTRICITY = "ELECTRICITY"
    COLD_WATER = "COLD_WATER"
    HOT_WATER = "HOT_WATER"
    GAS = "GAS"


class UtilityCategory(str, Enum):
    """Breakdown bucket on a bill; cold and hot water share one bucket."""

    ELECTRICITY = "electricity"
    WATER = "water"
    GAS = "gas"


METER_CATEGORY: dict[MeterType, UtilityCategory] = {
    MeterType.ELECTRICITY: UtilityCategory.ELECTRICITY,
    MeterType.COLD_WATER: UtilityCategory.WATER,
    MeterType.HOT_WATER: UtilityCategory.WATER,
    MeterType.GAS: UtilityCategory.GAS,
}


class BillType(str, Enum):
    """Kind of charge a bill represents."""

    RENT = "RENT"
    DEPOSIT = "DEPOSIT"
    UTILITIES = "UTILITIES"
    OTHER = "OTHER"


class BillStatus(str, Enum):
    """Bill lifecycle state.

    PAID means "has received some payment", not "fully settled".
    COMPLETED is terminal.
    """

    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    COMPLETED = "COMPLETED"


class PriceSource(str, Enum):
    """Where a bill detail's unit price came from."""

    METER_CONFIG = "METER_CONFIG"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"


class AggregationMode(str, Enum):
    """How utility readings are composed into bills."""

    AGGREGATED = "AGGREGATED"  # One bill per contract per period
    ITEMIZED = "ITEMIZED"  # One bill per meter reading


class Severity(str, Enum):
    """Consistency issue severity."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IssueType(str, Enum):
    """Known drift patterns detected by the consistency checker."""

    MISSING_BILL_DETAILS = "MISSING_BILL_DETAILS"
    DUPLICATE_BILL_DETAILS = "DUPLICATE_BILL_DETAILS"
    AMOUNT_INCONSISTENCY = "AMOUNT_INCONSISTENCY"
    ORPHANED_BILLED_STATUS = "ORPHANED_BILLED_STATUS"
    BALANCE_INCONSISTENCY = "BALANCE_INCONSISTENCY"
    STATUS_INCONSISTENCY = "STATUS_INCONSISTENCY"
    INCORRECT_DETAIL_AMOUNT = "INCORRECT_DETAIL_AMOUNT"
    INCONSISTENT_READING_STATUS = "INCONSISTENT_READING_STATUS"
    UNPARSEABLE_METADATA = "UNPARSEABLE_METADATA"
    OVERPAYMENT = "OVERPAYMENT"
    UNEVALUABLE_RECORD = "UNEVALUABLE_RECORD"
    CHECK_ERROR = "CHECK_ERROR"


class RemovalOutcome(str, Enum):
    """Result of removing a meter."""

    SOFT_DELETED = "SOFT_DELETED"
    HARD_DELETED = "HARD_DELETED"
