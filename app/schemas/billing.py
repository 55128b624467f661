"""Typed bill metadata describing how a utility bill was composed.

Stored on ``Bill.metadata`` as camelCase JSON, e.g.::

    {
        "triggerType": "UTILITY_READING",
        "aggregationMode": "AGGREGATED",
        "utilityDetails": {
            "breakdown": {"electricity": {"usage": "50", "unitPrice": "0.6", "amount": "30.00"}},
            "meterReadingIds": [12]
        }
    }
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.enums import AggregationMode, UtilityCategory


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UtilityCharge(_CamelModel):
    """Subtotal for one utility category."""

    usage: Decimal
    unit_price: Decimal
    amount: Decimal


class UtilityBreakdown(_CamelModel):
    """Per-category subtotals of a utility bill."""

    electricity: UtilityCharge | None = None
    water: UtilityCharge | None = None
    gas: UtilityCharge | None = None

    def charges(self) -> dict[UtilityCategory, UtilityCharge]:
        """Return the populated categories."""
        present = {
            UtilityCategory.ELECTRICITY: self.electricity,
            UtilityCategory.WATER: self.water,
            UtilityCategory.GAS: self.gas,
        }
        return {category: charge for category, charge in present.items() if charge is not None}

    def is_empty(self) -> bool:
        return not self.charges()


class UtilityDetails(_CamelModel):
    """Breakdown plus the readings that contributed to the bill."""

    breakdown: UtilityBreakdown = Field(default_factory=UtilityBreakdown)
    meter_reading_ids: list[int] = Field(default_factory=list)


class BillMetadata(_CamelModel):
    """Envelope stored on every generated utility bill."""

    trigger_type: str = "UTILITY_READING"
    generated_at: datetime | None = None
    aggregation_mode: AggregationMode | None = None
    utility_details: UtilityDetails | None = None

    @property
    def reading_ids(self) -> list[int]:
        """Contributing reading ids, empty when the bill has no utility details."""
        if self.utility_details is None:
            return []
        return list(self.utility_details.meter_reading_ids)
