"""
Rate Plan Engine

Computes daily sell rates for a channel rate plan:
- Base rate
- Weekend surcharge (flat amount on weekend days)
- Seasonal overrides (replace the base entirely, no weekend surcharge)
- Channel discount / markup percentage

The engine is pure arithmetic over a RatePlan; it knows nothing about
sync mechanics or rate parity.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Iterable
from dataclasses import dataclass

from ..config import settings
from ..models.rate_plan import RatePlan

CENT = Decimal("0.01")


@dataclass
class DailyRate:
    """Computed rate for a single day"""
    date: date
    base_rate: Decimal
    day_rate: Decimal  # After seasonal override / weekend surcharge
    sell_rate: Decimal  # After discount/markup, rounded
    is_weekend: bool
    is_seasonal: bool
    adjustment_percent: Decimal
    currency: str


class RatePlanEngine:
    """
    Rate computation for channel rate plans.

    Pricing Formula:
    1. day_rate = seasonal rate if date in a seasonal range
                  else base_rate (+ weekend_surcharge if weekend)
    2. sell_rate = round(day_rate * (1 + discount_percentage/100), 2)
    """

    def __init__(
        self,
        weekend_days: Optional[Iterable[int]] = None,
        currency: Optional[str] = None
    ):
        if weekend_days is None:
            weekend_days = settings.weekend_day_numbers
        self.weekend_days = set(weekend_days)
        self.currency = currency or settings.default_currency

    def is_weekend_day(self, check_date: date) -> bool:
        """
        Python weekday(): Monday=0, ..., Saturday=5, Sunday=6
        """
        return check_date.weekday() in self.weekend_days

    def compute_daily_rate(self, rate_plan: RatePlan, check_date: date) -> DailyRate:
        base_rate = Decimal(str(rate_plan.base_rate))
        is_weekend = self.is_weekend_day(check_date)

        # Step 1: seasonal override takes precedence over base + weekend
        seasonal = rate_plan.seasonal_rate_for(check_date)
        if seasonal is not None:
            day_rate = seasonal
        elif is_weekend:
            day_rate = base_rate + Decimal(str(rate_plan.weekend_surcharge or 0))
        else:
            day_rate = base_rate

        # Step 2: channel discount (negative) or markup (positive)
        adjustment = Decimal(str(rate_plan.discount_percentage or 0))
        sell_rate = day_rate * (1 + adjustment / 100)

        return DailyRate(
            date=check_date,
            base_rate=base_rate,
            day_rate=day_rate.quantize(CENT, rounding=ROUND_HALF_UP),
            sell_rate=sell_rate.quantize(CENT, rounding=ROUND_HALF_UP),
            is_weekend=is_weekend,
            is_seasonal=seasonal is not None,
            adjustment_percent=adjustment,
            currency=self.currency
        )

    def compute_sell_rate(self, rate_plan: RatePlan, check_date: date) -> Decimal:
        """Sell rate for one date, rounded to the currency's minor unit"""
        return self.compute_daily_rate(rate_plan, check_date).sell_rate

    def rate_calendar(
        self,
        rate_plan: RatePlan,
        start_date: date,
        end_date: date
    ) -> List[DailyRate]:
        """Daily rates from start_date to end_date (inclusive)"""
        rates = []
        current = start_date
        while current <= end_date:
            rates.append(self.compute_daily_rate(rate_plan, current))
            current += timedelta(days=1)
        return rates

    def compute_stay_total(
        self,
        rate_plan: RatePlan,
        check_in: date,
        check_out: date,
        rooms: int = 1
    ) -> dict:
        """
        Total for a multi-night stay (check_out exclusive).
        """
        nights = []
        total = Decimal("0")
        current = check_in

        while current < check_out:
            rate = self.compute_sell_rate(rate_plan, current)
            nights.append({"date": current.isoformat(), "rate": str(rate)})
            total += rate
            current += timedelta(days=1)

        total = (total * rooms).quantize(CENT, rounding=ROUND_HALF_UP)
        return {
            "rate_plan_id": rate_plan.id,
            "check_in": check_in.isoformat(),
            "check_out": check_out.isoformat(),
            "num_nights": len(nights),
            "rooms": rooms,
            "nights": nights,
            "total": str(total),
            "currency": self.currency,
            "generated_at": datetime.utcnow().isoformat()
        }


def compute_net_rate(room_rate: Decimal, commission_percent: Decimal) -> Decimal:
    """Net rate after channel commission: rate - rate * commission / 100"""
    room_rate = Decimal(str(room_rate))
    commission_percent = Decimal(str(commission_percent or 0))
    net = room_rate - (room_rate * commission_percent / 100)
    return net.quantize(CENT, rounding=ROUND_HALF_UP)


def get_rate_plan_engine() -> RatePlanEngine:
    """Factory function to get a rate plan engine instance"""
    return RatePlanEngine()
