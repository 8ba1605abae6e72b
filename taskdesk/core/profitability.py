"""Client profitability calculator — pure business logic.

Converts {hourly rate, spent hours, target hours} into revenue, a
profitability percentage against the target-hours budget, and the billable
hours still needed to break even.

No I/O: this module only transforms data. Both the server (on every write of
a Profitability record) and the dashboard client call the same function.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from taskdesk.core.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ProfitabilityResult:
    """Derived profitability figures."""

    revenue: float
    profitability_percentage: float
    remaining_hours: float
    is_profitable: bool


@dataclass
class PortfolioSummary:
    """Roll-up of several clients' profitability, for dashboard widgets."""

    client_count: int
    total_revenue: float
    profitable_clients: int
    unprofitable_clients: int
    average_percentage: float


def validate_inputs(hourly_rate: float, spent_hours: float, target_hours: float) -> None:
    """Raise ValidationError unless rate > 0 and both hour values are >= 0.

    NaN and infinities are rejected for all three.
    """
    if hourly_rate is None or not math.isfinite(hourly_rate) or hourly_rate <= 0:
        raise ValidationError("hourly_rate must be a finite number greater than 0")
    if spent_hours is None or not math.isfinite(spent_hours) or spent_hours < 0:
        raise ValidationError("spent_hours must be a finite number >= 0")
    if target_hours is None or not math.isfinite(target_hours) or target_hours < 0:
        raise ValidationError("target_hours must be a finite number >= 0")


def calculate_profitability(
    hourly_rate: float,
    spent_hours: float,
    target_hours: float,
) -> ProfitabilityResult:
    """Compute revenue, percentage vs. target budget, and remaining hours.

    A target of 0 hours means "no budget set": the percentage is reported as
    0 (and therefore profitable), whatever the spent hours.

    Raises:
        ValidationError: if hourly_rate <= 0 or any hours value is negative.
    """
    validate_inputs(hourly_rate, spent_hours, target_hours)

    revenue = hourly_rate * spent_hours
    target_revenue = target_hours * hourly_rate

    if target_hours > 0:
        percentage = ((revenue / target_revenue) - 1) * 100
    else:
        percentage = 0.0

    is_profitable = percentage >= 0
    if is_profitable:
        remaining = 0.0
    else:
        remaining = max(0.0, (target_revenue - revenue) / hourly_rate)

    return ProfitabilityResult(
        revenue=revenue,
        profitability_percentage=percentage,
        remaining_hours=remaining,
        is_profitable=is_profitable,
    )


def summarize_portfolio(results: list[ProfitabilityResult]) -> PortfolioSummary:
    """Aggregate per-client results. Average is 0 for an empty list."""
    if not results:
        return PortfolioSummary(0, 0.0, 0, 0, 0.0)

    profitable = sum(1 for r in results if r.is_profitable)
    return PortfolioSummary(
        client_count=len(results),
        total_revenue=sum(r.revenue for r in results),
        profitable_clients=profitable,
        unprofitable_clients=len(results) - profitable,
        average_percentage=sum(r.profitability_percentage for r in results) / len(results),
    )
