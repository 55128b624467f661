"""Billing configuration passed explicitly through the billing pipeline."""

from dataclasses import dataclass, field
from decimal import Decimal

from app.core.config import Settings, settings
from app.models.enums import AggregationMode, MeterType


@dataclass(frozen=True)
class BillingConfig:
    """Prices and policies used by the calculator, aggregator and repairer."""

    default_prices: dict[MeterType, Decimal] = field(
        default_factory=lambda: {
            MeterType.ELECTRICITY: Decimal("0.6"),
            MeterType.COLD_WATER: Decimal("3.5"),
            MeterType.HOT_WATER: Decimal("3.5"),
            MeterType.GAS: Decimal("2.5"),
        }
    )
    due_days: int = 10
    default_aggregation_mode: AggregationMode = AggregationMode.AGGREGATED
    allow_overpayment: bool = False
    auto_complete_on_settle: bool = True
    amount_epsilon: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "BillingConfig":
        """Build a config from application settings."""
        s = source or settings
        return cls(
            default_prices={
                MeterType.ELECTRICITY: s.DEFAULT_ELECTRICITY_PRICE,
                MeterType.COLD_WATER: s.DEFAULT_WATER_PRICE,
                MeterType.HOT_WATER: s.DEFAULT_WATER_PRICE,
                MeterType.GAS: s.DEFAULT_GAS_PRICE,
            },
            due_days=s.BILL_DUE_DAYS,
            default_aggregation_mode=AggregationMode(s.DEFAULT_AGGREGATION_MODE.upper()),
            allow_overpayment=s.ALLOW_OVERPAYMENT,
            auto_complete_on_settle=s.AUTO_COMPLETE_ON_SETTLE,
            amount_epsilon=s.AMOUNT_EPSILON,
        )

    def default_price(self, meter_type: MeterType | str) -> Decimal | None:
        return self.default_prices.get(MeterType(meter_type))


def get_billing_config() -> BillingConfig:
    """Dependency for getting the billing configuration."""
    return BillingConfig.from_settings()
